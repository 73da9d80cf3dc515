from database.connection import get_db, with_retry


class PassAuthTokenRepository:

    @staticmethod
    @with_retry()
    def get(serial_number: str) -> dict | None:
        db = get_db()
        result = db.table("pass_auth_tokens").select("*").eq(
            "serial_number", serial_number
        ).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def create(serial_number: str, auth_token: str) -> dict | None:
        """Insert a token; raises APIError (23505) if the serial already has one."""
        db = get_db()
        result = db.table("pass_auth_tokens").insert({
            "serial_number": serial_number,
            "auth_token": auth_token,
        }).execute()
        return result.data[0] if result and result.data else None
