"""
Pass Coordinator for pass lifecycle operations.

Orchestrates the operations other parts of the platform call: issuing a pass,
applying a staff scan, deactivating a pass, and waking devices afterwards.
"""

import logging
from typing import Optional

from app.domain.errors import (
    CardNotFoundError,
    CustomerNotFoundError,
    InvalidQRPayloadError,
    NotPersonalizedPassError,
    PassNotFoundError,
)
from app.domain.schemas import BalanceResult, CertificateDiagnostics, IssuedPass
from app.repositories.card_design import CardDesignRepository
from app.repositories.customer import CustomerRepository
from app.repositories.customer_pass import CustomerPassRepository
from app.repositories.transaction import TransactionRepository
from app.services.apns import PushDispatcher, PushSummary, create_push_dispatcher
from app.services.auth_tokens import AuthTokenService
from app.services.balance import BalanceEngine, create_balance_engine
from app.services.certificate_provider import get_certificate_provider
from app.services.pass_generator import parse_qr_payload
from app.services.wallets.apple import AppleWalletService, create_apple_wallet_service

logger = logging.getLogger(__name__)


class PassCoordinator:
    """
    Coordinates the pass lifecycle across services.

    Provides a unified interface for:
    - Pass issuing (serial number + auth token + download URL)
    - Scans (balance update, then push to registered devices)
    - Deactivation (voided pass, then push)
    """

    def __init__(
        self,
        apple: Optional[AppleWalletService] = None,
        balance: Optional[BalanceEngine] = None,
        push: Optional[PushDispatcher] = None,
        auth_tokens: Optional[AuthTokenService] = None,
    ):
        self._apple = apple
        self._balance = balance
        self._push = push
        self.auth_tokens = auth_tokens or AuthTokenService()

    @property
    def apple(self) -> AppleWalletService:
        """Lazy-initialize Apple Wallet service."""
        if self._apple is None:
            self._apple = create_apple_wallet_service()
        return self._apple

    @property
    def balance(self) -> BalanceEngine:
        if self._balance is None:
            self._balance = create_balance_engine()
        return self._balance

    @property
    def push(self) -> PushDispatcher:
        if self._push is None:
            self._push = create_push_dispatcher()
        return self._push

    def issue_pass(self, customer_id: int | str, card_id: int | str) -> IssuedPass:
        """Create (or return) the customer's pass for a card and mint its token."""
        if CustomerRepository.get_by_id(customer_id) is None:
            raise CustomerNotFoundError()
        card = CardDesignRepository.get_card(card_id)
        if card is None or not card.is_active:
            raise CardNotFoundError()

        customer_pass = CustomerPassRepository.create(customer_id, card_id)
        serial_number = customer_pass["serial_number"]
        self.auth_tokens.get_or_create(serial_number)

        logger.info(f"Issued pass {serial_number} for customer {customer_id} on card {card_id}")
        return IssuedPass(serial_number=serial_number, download_url=self.apple.get_pass_url(serial_number))

    def resolve_serial(self, code: str) -> str:
        """Serial number of the personalized pass a scanned code refers to."""
        payload = parse_qr_payload(code)
        if payload.is_preview:
            raise NotPersonalizedPassError()
        if payload.bare_serial:
            return payload.serial

        customer_pass = CustomerPassRepository.get_by_serial(payload.serial)
        if not customer_pass:
            raise PassNotFoundError()
        if (
            str(customer_pass["customer_id"]) != payload.customer_id
            or str(customer_pass["card_id"]) != payload.card_id
        ):
            raise InvalidQRPayloadError()
        return payload.serial

    def scan(
        self,
        code: str,
        delta: int = 1,
        description: str | None = None,
        staff_id: int | str | None = None,
    ) -> BalanceResult:
        """Apply a staff scan. Devices are notified separately, after the response."""
        serial_number = self.resolve_serial(code)
        return self.balance.apply_scan(serial_number, delta, description, staff_id)

    async def notify_pass_updated(self, serial_number: str) -> Optional[PushSummary]:
        """Best-effort push; failures are logged and never reach the caller."""
        try:
            return await self.push.notify_pass_updated(serial_number)
        except Exception:
            logger.exception(f"Push dispatch failed for {serial_number}")
            return None

    def deactivate_pass(self, serial_number: str) -> dict:
        """Soft-deactivate: the pass stays fetchable but is served voided."""
        customer_pass = CustomerPassRepository.get_by_serial(serial_number)
        if not customer_pass:
            raise PassNotFoundError()
        updated = CustomerPassRepository.deactivate(serial_number) or customer_pass
        logger.info(f"Deactivated pass {serial_number}")
        return updated

    def list_transactions(self, serial_number: str, limit: int = 50, offset: int = 0) -> list[dict]:
        customer_pass = CustomerPassRepository.get_by_serial(serial_number)
        if not customer_pass:
            raise PassNotFoundError()
        return TransactionRepository.list_for_pass(customer_pass["id"], limit=limit, offset=offset)

    def get_certificate_diagnostics(self) -> CertificateDiagnostics:
        return get_certificate_provider().diagnostics()


def create_pass_coordinator() -> PassCoordinator:
    """Factory function to create PassCoordinator."""
    return PassCoordinator()
