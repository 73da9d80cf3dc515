from database.connection import get_db, with_retry


class PushLogRepository:
    """Append-only record of push delivery attempts."""

    @staticmethod
    @with_retry()
    def record(
        serial_number: str,
        push_token: str,
        status: str,
        error_message: str | None = None,
    ) -> None:
        db = get_db()
        db.table("push_notification_log").insert({
            "serial_number": serial_number,
            "push_token": push_token,
            "status": status,
            "error_message": error_message,
        }).execute()
