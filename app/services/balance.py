"""
Balance & Reward Engine.

Applies a scan to a pass balance and records it in the ledger:
- stamps: reaching maxStamps earns the reward and the card resets to 0
- points: the reward fires once, on the scan that crosses rewardThreshold
- membership: a visit counter, no reward

Concurrent scans on one pass are serialized with a compare-and-set on the
pass row's version. The balance and its ledger row are written together by
one database function, so neither exists without the other.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.domain.errors import (
    BalanceConflictError,
    CardNotFoundError,
    InvalidDeltaError,
    PassInactiveError,
    PassNotFoundError,
)
from app.domain.schemas import BalanceResult, LoyaltyCard, PointsDesign, StampsDesign
from app.repositories.card_design import CardDesignRepository
from app.repositories.customer_pass import CustomerPassRepository

logger = logging.getLogger(__name__)

DEFAULT_REWARD_MESSAGE = "Reward earned!"


@dataclass(frozen=True)
class BalanceChange:
    new_balance: int
    reward_earned: bool
    reward_message: Optional[str] = None


def transaction_type(card: LoyaltyCard) -> str:
    if isinstance(card.design, StampsDesign):
        return "stamp"
    if isinstance(card.design, PointsDesign):
        return "points"
    return "visit"


def compute_balance(card: LoyaltyCard, balance: int, delta: int) -> BalanceChange:
    """Pure reward rule for one scan."""
    design = card.design
    new_balance = balance + delta

    if isinstance(design, StampsDesign):
        if new_balance >= design.max_stamps:
            # Overflow past the threshold is discarded
            return BalanceChange(0, True, design.reward_description or DEFAULT_REWARD_MESSAGE)
        return BalanceChange(new_balance, False)

    if isinstance(design, PointsDesign):
        if balance < design.reward_threshold <= new_balance:
            return BalanceChange(new_balance, True, design.reward_description or DEFAULT_REWARD_MESSAGE)
        return BalanceChange(new_balance, False)

    return BalanceChange(new_balance, False)


class BalanceEngine:
    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts

    def apply_scan(
        self,
        serial_number: str,
        delta: int,
        description: str | None = None,
        staff_id: int | str | None = None,
    ) -> BalanceResult:
        """Add ``delta`` to a pass balance and append the matching transaction."""
        if isinstance(delta, bool) or not isinstance(delta, int) or delta < 0:
            raise InvalidDeltaError()

        for attempt in range(1, self.max_attempts + 1):
            customer_pass = CustomerPassRepository.get_by_serial(serial_number)
            if not customer_pass:
                raise PassNotFoundError()
            if not customer_pass.get("is_active", True):
                raise PassInactiveError()

            card = CardDesignRepository.get_card(customer_pass["card_id"])
            if card is None:
                raise CardNotFoundError()

            previous = int(customer_pass.get("current_balance") or 0)
            change = compute_balance(card, previous, delta)

            updated = CustomerPassRepository.apply_balance_change(
                customer_pass["id"],
                expected_version=int(customer_pass.get("version") or 0),
                current_balance=change.new_balance,
                lifetime_balance=int(customer_pass.get("lifetime_balance") or 0) + delta,
                transaction_type=transaction_type(card),
                amount=delta,
                description=description,
                staff_id=staff_id,
            )
            if updated is None:
                logger.info(
                    f"Balance update for {serial_number} lost a race, retrying "
                    f"({attempt}/{self.max_attempts})"
                )
                continue

            if change.reward_earned:
                logger.info(f"Reward earned on pass {serial_number}")

            return BalanceResult(
                serial_number=serial_number,
                previous_balance=previous,
                new_balance=change.new_balance,
                amount_added=delta,
                reward_earned=change.reward_earned,
                reward_message=change.reward_message,
            )

        logger.warning(f"Balance update for {serial_number} gave up after {self.max_attempts} conflicts")
        raise BalanceConflictError()


def create_balance_engine() -> BalanceEngine:
    from app.core.config import settings

    return BalanceEngine(max_attempts=settings.balance_max_attempts)
