from datetime import datetime, timezone

from app.repositories.device import DeviceRepository
from tests.helpers.factories import make_pass

PASS_TYPE = "pass.com.example.loyalty"


def test_register_is_idempotent(fake_db):
    assert DeviceRepository.register("device-1", PASS_TYPE, "serial-1", "token-a") is True
    assert DeviceRepository.register("device-1", PASS_TYPE, "serial-1", "token-b") is False

    [registration] = fake_db.rows("device_registrations")
    assert registration["push_token"] == "token-b"


def test_same_device_many_passes(fake_db):
    DeviceRepository.register("device-1", PASS_TYPE, "serial-1", "token-a")
    DeviceRepository.register("device-1", PASS_TYPE, "serial-2", "token-a")
    DeviceRepository.register("device-2", PASS_TYPE, "serial-1", "token-c")

    assert sorted(DeviceRepository.get_serial_numbers_for_device("device-1")) == ["serial-1", "serial-2"]
    assert {r["push_token"] for r in DeviceRepository.get_for_serial("serial-1")} == {"token-a", "token-c"}


def test_unregister_is_idempotent(fake_db):
    DeviceRepository.register("device-1", PASS_TYPE, "serial-1", "token-a")

    DeviceRepository.unregister("device-1", "serial-1")
    DeviceRepository.unregister("device-1", "serial-1")

    assert fake_db.rows("device_registrations") == []


def test_list_updated_serials(fake_db, seeded):
    customer_id = seeded["customer"]["id"]
    old = make_pass(
        fake_db, customer_id, seeded["stamps_card"]["id"],
        serial_number="old", last_updated="2026-01-01T00:00:00+00:00",
    )
    new = make_pass(
        fake_db, customer_id, seeded["points_card"]["id"],
        serial_number="new", last_updated="2026-03-01T00:00:00.500000+00:00",
    )
    for customer_pass in (old, new):
        DeviceRepository.register("device-1", PASS_TYPE, customer_pass["serial_number"], "token-a")

    serials, latest = DeviceRepository.list_updated_serials("device-1", PASS_TYPE)
    assert serials == ["new", "old"]
    assert latest == datetime(2026, 3, 1, 0, 0, 0, 500000, tzinfo=timezone.utc)

    since = datetime(2026, 2, 1, tzinfo=timezone.utc)
    assert DeviceRepository.list_updated_serials("device-1", PASS_TYPE, since)[0] == ["new"]

    # Strictly after: the tag we handed out returns nothing new
    assert DeviceRepository.list_updated_serials("device-1", PASS_TYPE, latest) == ([], None)


def test_unknown_device_has_no_serials(fake_db):
    assert DeviceRepository.list_updated_serials("device-x", PASS_TYPE) == ([], None)
