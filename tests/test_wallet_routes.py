import io
import json
import zipfile

import pytest

from app.services.certificate_provider import CertificateProvider
from tests.helpers.certs import PASS_TYPE_ID
from tests.helpers.factories import make_pass

DEVICE = "device-lib-1"


@pytest.fixture
def issued(fake_db, seeded, auth_tokens):
    """A pass with a minted token, as issuing leaves it."""
    customer_pass = make_pass(fake_db, seeded["customer"]["id"], seeded["stamps_card"]["id"], balance=3)
    token = auth_tokens.get_or_create(customer_pass["serial_number"])
    return customer_pass["serial_number"], token


def auth(token: str) -> dict:
    return {"Authorization": f"ApplePass {token}"}


def registration_url(serial_number: str) -> str:
    return f"/wallet/v1/devices/{DEVICE}/registrations/{PASS_TYPE_ID}/{serial_number}"


class TestRegistration:
    def test_register_then_refresh(self, client, issued, fake_db):
        serial_number, token = issued

        first = client.post(registration_url(serial_number), json={"pushToken": "push-1"}, headers=auth(token))
        second = client.post(registration_url(serial_number), json={"pushToken": "push-2"}, headers=auth(token))

        assert first.status_code == 201
        assert second.status_code == 200
        [registration] = fake_db.rows("device_registrations")
        assert registration["push_token"] == "push-2"

    def test_bad_token_touches_nothing(self, client, issued, fake_db):
        serial_number, _ = issued

        missing = client.post(registration_url(serial_number), json={"pushToken": "push-1"})
        wrong = client.post(registration_url(serial_number), json={"pushToken": "push-1"}, headers=auth("nope"))
        wrong_scheme = client.post(
            registration_url(serial_number), json={"pushToken": "push-1"}, headers={"Authorization": "Bearer x"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert wrong_scheme.status_code == 401
        assert fake_db.rows("device_registrations") == []

    def test_missing_push_token(self, client, issued):
        serial_number, token = issued

        response = client.post(registration_url(serial_number), json={}, headers=auth(token))

        assert response.status_code == 400

    def test_unregister(self, client, issued, fake_db):
        serial_number, token = issued
        client.post(registration_url(serial_number), json={"pushToken": "push-1"}, headers=auth(token))

        assert client.delete(registration_url(serial_number), headers=auth("nope")).status_code == 401
        assert client.delete(registration_url(serial_number), headers=auth(token)).status_code == 200
        assert client.delete(registration_url(serial_number), headers=auth(token)).status_code == 200
        assert fake_db.rows("device_registrations") == []


class TestSerialNumbers:
    def test_no_registrations(self, client, fake_db):
        response = client.get(f"/wallet/v1/devices/{DEVICE}/registrations/{PASS_TYPE_ID}")
        assert response.status_code == 204

    def test_update_tag_round_trip(self, client, issued):
        serial_number, token = issued
        client.post(registration_url(serial_number), json={"pushToken": "push-1"}, headers=auth(token))
        url = f"/wallet/v1/devices/{DEVICE}/registrations/{PASS_TYPE_ID}"

        response = client.get(url)
        assert response.status_code == 200
        body = response.json()
        assert body["serialNumbers"] == [serial_number]

        unchanged = client.get(url, params={"passesUpdatedSince": body["lastUpdated"]})
        assert unchanged.status_code == 204

    def test_iso_tag_accepted(self, client, issued):
        serial_number, token = issued
        client.post(registration_url(serial_number), json={"pushToken": "push-1"}, headers=auth(token))

        response = client.get(
            f"/wallet/v1/devices/{DEVICE}/registrations/{PASS_TYPE_ID}",
            params={"passesUpdatedSince": "2025-12-31T00:00:00Z"},
        )

        assert response.json()["serialNumbers"] == [serial_number]


class TestFetchPass:
    def url(self, serial_number: str) -> str:
        return f"/wallet/v1/passes/{PASS_TYPE_ID}/{serial_number}"

    def test_returns_signed_archive(self, client, issued):
        serial_number, token = issued

        response = client.get(self.url(serial_number), headers=auth(token))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/vnd.apple.pkpass"
        assert response.headers["last-modified"] == "Thu, 01 Jan 2026 12:00:00 GMT"
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            pass_json = json.loads(zf.read("pass.json"))
        assert pass_json["serialNumber"] == serial_number
        assert pass_json["authenticationToken"] == token
        assert pass_json["storeCard"]["primaryFields"][0]["value"] == "3/10"

    def test_not_modified_skips_signing(self, client, issued, apple_service, monkeypatch):
        serial_number, token = issued

        def fail(*args, **kwargs):
            raise AssertionError("signing should not run for an unchanged pass")

        monkeypatch.setattr(apple_service, "build_pass", fail)

        response = client.get(
            self.url(serial_number),
            headers={**auth(token), "If-Modified-Since": "Thu, 01 Jan 2026 12:00:00 GMT"},
        )

        assert response.status_code == 304

    def test_stale_client_gets_fresh_archive(self, client, issued):
        serial_number, token = issued

        response = client.get(
            self.url(serial_number),
            headers={**auth(token), "If-Modified-Since": "Thu, 01 Jan 2026 11:59:59 GMT"},
        )

        assert response.status_code == 200
        assert response.content[:2] == b"PK"

    def test_wrong_token(self, client, issued):
        serial_number, _ = issued
        assert client.get(self.url(serial_number), headers=auth("nope")).status_code == 401

    def test_unknown_pass(self, client, fake_db, auth_tokens):
        token = auth_tokens.get_or_create("ghost-serial")
        assert client.get(self.url("ghost-serial"), headers=auth(token)).status_code == 404

    def test_certificates_not_configured(self, client, issued, apple_service, monkeypatch):
        serial_number, token = issued
        monkeypatch.setattr(apple_service.pass_generator, "_certificate_provider", CertificateProvider(None, None, None))

        response = client.get(self.url(serial_number), headers=auth(token))

        assert response.status_code == 503
        assert response.headers["retry-after"] == "300"


def test_device_log(client, caplog):
    response = client.post("/wallet/v1/log", json={"logs": ["Web service error for pass.com.example.loyalty"]})

    assert response.status_code == 200
    assert "Web service error" in caplog.text
