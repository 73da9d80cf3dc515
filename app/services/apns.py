import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from aioapns import APNs, NotificationRequest

from app.repositories.device import DeviceRepository
from app.repositories.push_log import PushLogRepository

logger = logging.getLogger(__name__)

# APNs reasons meaning the token will never work again
PERMANENT_FAILURES = {"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"}


@dataclass(frozen=True)
class PushResult:
    ok: bool
    status: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_permanent_failure(self) -> bool:
        return not self.ok and (self.reason in PERMANENT_FAILURES or self.status == "410")

    @property
    def is_transient_failure(self) -> bool:
        """Transport errors, throttling and APNs server errors are worth retrying."""
        if self.ok or self.is_permanent_failure:
            return False
        return self.status is None or self.status == "429" or self.status.startswith("5")


@dataclass
class PushSummary:
    serial_number: str
    sent: int = 0
    failed: int = 0
    invalid: int = 0
    skipped: bool = False


class APNsClient:
    """Apple Push Notification service client for Wallet pass updates.

    Accepts either token auth (.p8 key + key id + team id) or a client
    certificate PEM file. The payload is always empty: the device calls back
    to the web service to find out what changed.
    """

    def __init__(
        self,
        pass_type_id: str,
        use_sandbox: bool = True,
        cert_path: str | None = None,
        auth_key_path: str | None = None,
        key_id: str | None = None,
        team_id: str | None = None,
    ):
        if not cert_path and not (auth_key_path and key_id and team_id):
            raise ValueError("Either cert_path or auth_key_path, key_id and team_id must be provided")
        self.pass_type_id = pass_type_id
        self.use_sandbox = use_sandbox
        self.cert_path = cert_path
        self.auth_key_path = auth_key_path
        self.key_id = key_id
        self.team_id = team_id
        self._client = None

    def _get_client(self) -> APNs:
        """Get or create the APNs client."""
        if self._client is None:
            if self.auth_key_path:
                self._client = APNs(
                    key=self.auth_key_path,
                    key_id=self.key_id,
                    team_id=self.team_id,
                    topic=self.pass_type_id,
                    use_sandbox=self.use_sandbox,
                )
            else:
                self._client = APNs(
                    client_cert=self.cert_path,
                    use_sandbox=self.use_sandbox,
                )
        return self._client

    async def send_pass_update(self, push_token: str) -> PushResult:
        """Send a push notification to update a Wallet pass."""
        request = NotificationRequest(
            device_token=push_token,
            message={},
            apns_topic=self.pass_type_id,
        )
        try:
            response = await self._get_client().send_notification(request)
        except Exception as e:
            # Connection resets, timeouts, TLS failures: no APNs status at all
            return PushResult(ok=False, reason=f"{type(e).__name__}: {e}")

        if response.is_successful:
            return PushResult(ok=True, status=str(response.status))
        return PushResult(ok=False, status=str(response.status), reason=response.description)


class PushDispatcher:
    """Fans a pass update out to every device registered for the serial."""

    def __init__(
        self,
        client: APNsClient | None,
        max_retries: int = 2,
        retry_base_delay: float = 0.5,
    ):
        self.client = client
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def notify_pass_updated(self, serial_number: str) -> PushSummary:
        """Wake all devices holding the pass. Never raises for a single device."""
        summary = PushSummary(serial_number=serial_number)
        if self.client is None:
            logger.info(f"APNs not configured, skipping push for {serial_number}")
            summary.skipped = True
            return summary

        registrations = await asyncio.to_thread(DeviceRepository.get_for_serial, serial_number)
        if not registrations:
            return summary

        outcomes = await asyncio.gather(
            *(self._deliver(serial_number, registration) for registration in registrations),
            return_exceptions=True,
        )

        for registration, outcome in zip(registrations, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Push to device {registration.get('device_library_identifier')} crashed: {outcome}"
                )
                summary.failed += 1
            elif outcome == "sent":
                summary.sent += 1
            elif outcome == "invalid_token":
                summary.invalid += 1
            else:
                summary.failed += 1

        logger.info(
            f"Push for {serial_number}: sent={summary.sent} failed={summary.failed} invalid={summary.invalid}"
        )
        return summary

    async def _deliver(self, serial_number: str, registration: dict) -> str:
        push_token = registration["push_token"]

        for attempt in range(self.max_retries + 1):
            result = await self.client.send_pass_update(push_token)

            if result.ok:
                await self._record(serial_number, push_token, "sent")
                return "sent"

            if result.is_permanent_failure:
                logger.info(f"Pruning registration {registration['id']}: {result.reason or result.status}")
                await self._record(serial_number, push_token, "invalid_token", result.reason or result.status)
                await asyncio.to_thread(DeviceRepository.delete, registration["id"])
                return "invalid_token"

            await self._record(serial_number, push_token, "failed", result.reason or result.status)
            if not result.is_transient_failure or attempt == self.max_retries:
                logger.warning(f"Push to {push_token[:20]}... failed: {result.status} - {result.reason}")
                return "failed"

            await asyncio.sleep(self.retry_base_delay * (2 ** attempt))

        return "failed"

    async def _record(self, serial_number: str, push_token: str, status: str, error: str | None = None) -> None:
        try:
            await asyncio.to_thread(PushLogRepository.record, serial_number, push_token, status, error)
        except Exception as e:
            logger.error(f"Failed to record push attempt for {serial_number}: {e}")


AUTH_KEY_FILENAME = "apns_auth_key.p8"


def _auth_key_path(settings) -> str | None:
    """Token auth key on disk; an inline key is written under cert_dir, owner-only."""
    if settings.apns_auth_key:
        cert_dir = Path(settings.cert_dir)
        cert_dir.mkdir(parents=True, exist_ok=True)
        key_path = cert_dir / AUTH_KEY_FILENAME
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(settings.apns_auth_key.replace("\\n", "\n"))
        # O_CREAT mode is ignored for an existing file
        os.chmod(key_path, 0o600)
        return str(key_path)
    if settings.apns_auth_key_path and Path(settings.apns_auth_key_path).is_file():
        return settings.apns_auth_key_path
    return None


def create_apns_client() -> APNsClient | None:
    """Factory function to create APNsClient from settings, or None if unconfigured."""
    from app.core.config import settings

    if not settings.apple_pass_type_id:
        return None

    key_path = _auth_key_path(settings) if settings.apns_key_id else None
    if key_path and settings.apple_team_id:
        return APNsClient(
            pass_type_id=settings.apple_pass_type_id,
            use_sandbox=settings.apns_use_sandbox,
            auth_key_path=key_path,
            key_id=settings.apns_key_id,
            team_id=settings.apple_team_id,
        )

    if settings.apns_cert_path and Path(settings.apns_cert_path).is_file():
        return APNsClient(
            pass_type_id=settings.apple_pass_type_id,
            use_sandbox=settings.apns_use_sandbox,
            cert_path=settings.apns_cert_path,
        )

    return None


def create_push_dispatcher() -> PushDispatcher:
    from app.core.config import settings

    return PushDispatcher(
        client=create_apns_client(),
        max_retries=settings.push_max_retries,
        retry_base_delay=settings.push_retry_base_delay,
    )
