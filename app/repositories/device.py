from datetime import datetime, timezone

from postgrest.exceptions import APIError

from app.core.timestamps import parse_datetime
from app.repositories.customer_pass import CustomerPassRepository
from database.connection import get_db, is_unique_violation, with_retry


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeviceRepository:
    """Which Apple Wallet devices are watching which passes."""

    @staticmethod
    @with_retry()
    def get(device_library_id: str, serial_number: str) -> dict | None:
        db = get_db()
        result = db.table("device_registrations").select("*").eq(
            "device_library_identifier", device_library_id
        ).eq("serial_number", serial_number).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def _update_push_token(registration_id: int | str, push_token: str) -> None:
        db = get_db()
        db.table("device_registrations").update({
            "push_token": push_token,
            "last_updated": _utcnow_iso(),
        }).eq("id", registration_id).execute()

    @staticmethod
    @with_retry()
    def register(
        device_library_id: str,
        pass_type_id: str,
        serial_number: str,
        push_token: str,
    ) -> bool:
        """Register a device for push notifications.

        Returns True when a new registration was created, False when an
        existing one had its push token refreshed.
        """
        existing = DeviceRepository.get(device_library_id, serial_number)
        if existing:
            DeviceRepository._update_push_token(existing["id"], push_token)
            return False

        db = get_db()
        try:
            db.table("device_registrations").insert({
                "device_library_identifier": device_library_id,
                "pass_type_identifier": pass_type_id,
                "serial_number": serial_number,
                "push_token": push_token,
            }).execute()
        except APIError as e:
            if not is_unique_violation(e):
                raise
            # Lost an insert race with the same device; fall back to an update
            existing = DeviceRepository.get(device_library_id, serial_number)
            if existing is None:
                raise
            DeviceRepository._update_push_token(existing["id"], push_token)
            return False
        return True

    @staticmethod
    @with_retry()
    def unregister(device_library_id: str, serial_number: str) -> None:
        """Unregister a device. Deleting a missing registration is not an error."""
        db = get_db()
        db.table("device_registrations").delete().eq(
            "device_library_identifier", device_library_id
        ).eq("serial_number", serial_number).execute()

    @staticmethod
    @with_retry()
    def delete(registration_id: int | str) -> None:
        db = get_db()
        db.table("device_registrations").delete().eq("id", registration_id).execute()

    @staticmethod
    @with_retry()
    def get_for_serial(serial_number: str) -> list[dict]:
        """All registrations watching a pass."""
        db = get_db()
        result = db.table("device_registrations").select("*").eq(
            "serial_number", serial_number
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def get_serial_numbers_for_device(
        device_library_id: str,
        pass_type_id: str | None = None,
    ) -> list[str]:
        """Get all serial numbers registered to a device."""
        db = get_db()
        query = db.table("device_registrations").select("serial_number").eq(
            "device_library_identifier", device_library_id
        )
        if pass_type_id:
            query = query.eq("pass_type_identifier", pass_type_id)
        result = query.execute()
        return [row["serial_number"] for row in (result.data or [])]

    @staticmethod
    def list_updated_serials(
        device_library_id: str,
        pass_type_id: str | None = None,
        updated_since: datetime | None = None,
    ) -> tuple[list[str], datetime | None]:
        """Serials on a device whose pass changed after ``updated_since``.

        Returns the serials plus the newest ``last_updated`` among them, which
        becomes the device's next passesUpdatedSince tag. An empty list means
        "no content".
        """
        serial_numbers = DeviceRepository.get_serial_numbers_for_device(
            device_library_id, pass_type_id
        )
        if not serial_numbers:
            return [], None

        matched: list[str] = []
        latest: datetime | None = None
        for customer_pass in CustomerPassRepository.get_many_by_serials(serial_numbers):
            last_updated = parse_datetime(customer_pass.get("last_updated"))
            if updated_since is not None and (last_updated is None or last_updated <= updated_since):
                continue
            matched.append(customer_pass["serial_number"])
            if last_updated and (latest is None or last_updated > latest):
                latest = last_updated

        return sorted(matched), latest
