import uuid
from datetime import datetime, timezone

from postgrest.exceptions import APIError

from database.connection import get_db, is_unique_violation, with_retry


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CustomerPassRepository:
    """One pass per (customer, card); the serial number is its public identity."""

    @staticmethod
    @with_retry()
    def get_by_serial(serial_number: str) -> dict | None:
        db = get_db()
        result = db.table("customer_passes").select("*").eq(
            "serial_number", serial_number
        ).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_customer_and_card(customer_id: int | str, card_id: int | str) -> dict | None:
        db = get_db()
        result = db.table("customer_passes").select("*").eq(
            "customer_id", customer_id
        ).eq("card_id", card_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_many_by_serials(serial_numbers: list[str]) -> list[dict]:
        if not serial_numbers:
            return []
        db = get_db()
        result = db.table("customer_passes").select("*").in_(
            "serial_number", serial_numbers
        ).execute()
        return result.data if result and result.data else []

    @staticmethod
    @with_retry()
    def create(customer_id: int | str, card_id: int | str) -> dict:
        """Create the pass for a customer/card pair, or return the existing one."""
        db = get_db()
        try:
            result = db.table("customer_passes").insert({
                "customer_id": customer_id,
                "card_id": card_id,
                "serial_number": str(uuid.uuid4()),
                "current_balance": 0,
                "lifetime_balance": 0,
                "version": 0,
                "is_active": True,
                "last_updated": _utcnow_iso(),
            }).execute()
        except APIError as e:
            if not is_unique_violation(e):
                raise
            # Issued concurrently for the same pair
            existing = CustomerPassRepository.get_by_customer_and_card(customer_id, card_id)
            if existing is None:
                raise
            return existing
        return result.data[0]

    @staticmethod
    def apply_balance_change(
        pass_id: int | str,
        expected_version: int,
        current_balance: int,
        lifetime_balance: int,
        transaction_type: str,
        amount: int,
        description: str | None = None,
        staff_id: int | str | None = None,
    ) -> dict | None:
        """Write a new balance and its ledger row in one database transaction.

        Applies only if nobody else wrote since ``expected_version`` and the
        pass is still active. Returns the updated row, or None when the write
        lost. Not wrapped in with_retry: a dropped response after the commit
        must not be replayed.
        """
        db = get_db()
        result = db.rpc("apply_pass_balance_change", {
            "p_pass_id": pass_id,
            "p_expected_version": expected_version,
            "p_current_balance": current_balance,
            "p_lifetime_balance": lifetime_balance,
            "p_type": transaction_type,
            "p_amount": amount,
            "p_description": description,
            "p_staff_id": str(staff_id) if staff_id is not None else None,
        }).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def deactivate(serial_number: str) -> dict | None:
        """Soft-deactivate a pass; registrations keep pointing at it.

        Bumps the version, so a scan that read the pass earlier loses.
        """
        db = get_db()
        result = db.rpc("deactivate_customer_pass", {"p_serial_number": serial_number}).execute()
        return result.data[0] if result and result.data else None
