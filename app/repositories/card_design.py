import logging

from pydantic import ValidationError

from app.domain.errors import InvalidCardDesignError
from app.domain.schemas import LoyaltyCard, parse_card_design
from database.connection import get_db, with_retry

logger = logging.getLogger(__name__)


def _describe(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"])
        problems.append(f"{field}: {err['msg']}" if field else err["msg"])
    return "; ".join(problems)


class CardDesignRepository:
    """Loyalty card programs and their design documents (read-only here)."""

    @staticmethod
    @with_retry()
    def get_by_id(card_id: int | str) -> dict | None:
        """Get a loyalty card row by ID."""
        db = get_db()
        result = db.table("loyalty_cards").select("*").eq("id", card_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    def get_card(card_id: int | str) -> LoyaltyCard | None:
        """Get a loyalty card with its design parsed into the typed variant."""
        row = CardDesignRepository.get_by_id(card_id)
        if not row:
            return None
        return CardDesignRepository.to_model(row)

    @staticmethod
    def to_model(row: dict) -> LoyaltyCard:
        try:
            design = parse_card_design(row.get("design"))
        except ValidationError as e:
            logger.error(f"Loyalty card {row['id']} has an invalid design: {e}")
            raise InvalidCardDesignError(
                f"Loyalty card {row['id']} has an invalid design: {_describe(e)}"
            ) from e

        return LoyaltyCard(
            id=row["id"],
            business_id=row.get("business_id"),
            name=row.get("name") or "Loyalty Card",
            is_active=row.get("is_active", True),
            updated_at=row.get("updated_at"),
            design=design,
        )
