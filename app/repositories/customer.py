from database.connection import get_db, with_retry


class CustomerRepository:

    @staticmethod
    @with_retry()
    def get_by_id(customer_id: int | str) -> dict | None:
        """Get a customer by ID."""
        db = get_db()
        result = db.table("customers").select("*").eq("id", customer_id).limit(1).execute()
        return result.data[0] if result and result.data else None
