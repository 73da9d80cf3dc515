from database.connection import get_db, with_retry


class BusinessRepository:
    """Read-only access to businesses (owned by the account side)."""

    @staticmethod
    @with_retry()
    def get_by_id(business_id: int | str) -> dict | None:
        """Get a business by ID."""
        db = get_db()
        result = db.table("businesses").select("*").eq("id", business_id).limit(1).execute()
        return result.data[0] if result and result.data else None
