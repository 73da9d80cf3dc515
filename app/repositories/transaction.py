from database.connection import get_db, with_retry


class TransactionRepository:
    """Append-only ledger of balance changes.

    Rows are written by the apply_pass_balance_change database function,
    together with the balance they record.
    """

    @staticmethod
    @with_retry()
    def list_for_pass(customer_pass_id: int | str, limit: int = 50, offset: int = 0) -> list[dict]:
        """Transactions for a pass, newest first."""
        db = get_db()
        result = db.table("transactions").select("*").eq(
            "customer_pass_id", customer_pass_id
        ).order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return result.data if result and result.data else []
