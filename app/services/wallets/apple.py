"""
Apple Wallet Service wrapper.

Builds signed passes for a serial number from the current database state,
wrapping PassGenerator and the auth token service. Logos are resolved on the
calling thread; signing and packaging then run in a bounded worker pool
with a timeout.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Optional

from app.core.config import get_pass_download_url
from app.domain.errors import CardNotFoundError, PassNotFoundError, SigningError
from app.repositories.business import BusinessRepository
from app.repositories.card_design import CardDesignRepository
from app.repositories.customer import CustomerRepository
from app.repositories.customer_pass import CustomerPassRepository
from app.services.auth_tokens import AuthTokenService
from app.services.pass_generator import PassGenerator, create_pass_generator

logger = logging.getLogger(__name__)


class AppleWalletService:
    """
    Service for creating Apple Wallet passes.

    Wraps PassGenerator for pass creation and AuthTokenService for the
    per-pass web service token.
    """

    def __init__(
        self,
        pass_generator: Optional[PassGenerator] = None,
        auth_tokens: Optional[AuthTokenService] = None,
        signing_timeout: float = 10.0,
        max_workers: int = 4,
    ):
        self._pass_generator = pass_generator
        self.auth_tokens = auth_tokens or AuthTokenService()
        self.signing_timeout = signing_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pass-signing")

    @property
    def pass_generator(self) -> PassGenerator:
        if self._pass_generator is None:
            self._pass_generator = create_pass_generator()
        return self._pass_generator

    def get_pass_url(self, serial_number: str) -> str:
        return get_pass_download_url(serial_number)

    def _sign_with_timeout(self, **kwargs) -> bytes:
        # Logo downloads run here, outside the signing timeout
        kwargs["logo"] = self.pass_generator.fetch_logo(kwargs["card"])
        future = self._executor.submit(self.pass_generator.generate_pass, **kwargs)
        try:
            return future.result(timeout=self.signing_timeout)
        except FuturesTimeoutError as e:
            future.cancel()
            logger.error(
                f"Pass signing for {kwargs.get('serial_number')} exceeded {self.signing_timeout}s"
            )
            raise SigningError() from e

    def build_pass(self, customer_pass: dict) -> bytes:
        """Generate the current signed archive for a stored pass."""
        card = CardDesignRepository.get_card(customer_pass["card_id"])
        if card is None:
            raise CardNotFoundError()

        business = BusinessRepository.get_by_id(card.business_id) if card.business_id else None
        customer = CustomerRepository.get_by_id(customer_pass["customer_id"])
        if customer is None:
            # Keep the pass scannable even if the customer record is gone
            customer = {"id": customer_pass["customer_id"]}

        return self._sign_with_timeout(
            card=card,
            serial_number=customer_pass["serial_number"],
            balance=int(customer_pass.get("current_balance") or 0),
            business=business,
            customer=customer,
            auth_token=self.auth_tokens.get_or_create(customer_pass["serial_number"]),
            voided=not customer_pass.get("is_active", True),
        )

    def generate_pass_for_serial(self, serial_number: str) -> bytes:
        customer_pass = CustomerPassRepository.get_by_serial(serial_number)
        if not customer_pass:
            raise PassNotFoundError()
        return self.build_pass(customer_pass)

    def generate_preview(self, card_id: int | str) -> bytes:
        """Unpersonalized pass for a design: no web service, no auth token."""
        card = CardDesignRepository.get_card(card_id)
        if card is None:
            raise CardNotFoundError()

        business = BusinessRepository.get_by_id(card.business_id) if card.business_id else None
        return self._sign_with_timeout(
            card=card,
            serial_number=f"preview-{card.id}",
            balance=0,
            business=business,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def create_apple_wallet_service() -> AppleWalletService:
    """Factory function to create AppleWalletService."""
    from app.core.config import settings

    return AppleWalletService(
        signing_timeout=settings.signing_timeout_seconds,
        max_workers=settings.signing_workers,
    )
