import base64
import binascii
import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from app.domain.errors import InvalidQRPayloadError
from app.domain.schemas import LoyaltyCard, PointsDesign, StampsDesign
from app.services.certificate_provider import CertificateProvider, get_certificate_provider
from app.services.pass_archive import build_manifest, package_pass
from app.services.signing import sign_manifest

logger = logging.getLogger(__name__)

ICON_FILES = ("icon.png", "icon@2x.png")
LOGO_FILES = ("logo.png", "logo@2x.png")
DEFAULT_LOGO_TIMEOUT = 3.0
LOGO_CACHE_SIZE = 128

DEFAULT_BACKGROUND = (139, 90, 43)  # Default brown
_SERIAL_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


# ============================================
# Barcode payload
# ============================================

@dataclass(frozen=True)
class QRPayload:
    serial: str
    card_id: Optional[str] = None
    customer_id: Optional[str] = None
    bare_serial: bool = False

    @property
    def is_preview(self) -> bool:
        return not self.bare_serial and self.customer_id is None


def build_qr_payload(serial: str, card_id, customer_id=None) -> str:
    """Compact JSON carried by the pass barcode. Previews omit customerId."""
    payload = {"cardId": str(card_id)}
    if customer_id is not None:
        payload["customerId"] = str(customer_id)
    payload["serial"] = serial
    return json.dumps(payload, separators=(",", ":"))


def parse_qr_payload(code: str) -> QRPayload:
    """Accept a scanned barcode payload or a bare serial number."""
    code = (code or "").strip()
    if not code:
        raise InvalidQRPayloadError()

    if not code.startswith("{"):
        if not _SERIAL_RE.match(code):
            raise InvalidQRPayloadError()
        return QRPayload(serial=code, bare_serial=True)

    try:
        data = json.loads(code)
    except ValueError as e:
        raise InvalidQRPayloadError() from e

    if not isinstance(data, dict):
        raise InvalidQRPayloadError()
    serial = data.get("serial")
    card_id = data.get("cardId")
    customer_id = data.get("customerId")
    if not isinstance(serial, str) or not serial or card_id in (None, ""):
        raise InvalidQRPayloadError()

    return QRPayload(
        serial=serial,
        card_id=str(card_id),
        customer_id=str(customer_id) if customer_id not in (None, "") else None,
    )


# ============================================
# Colors & images
# ============================================

def _parse_rgb(color_str: str | None) -> tuple[int, int, int] | None:
    """Parse 'rgb(r,g,b)', '#RRGGBB' or '#RGB' to an RGB tuple."""
    if not color_str:
        return None

    color_str = color_str.strip()

    try:
        if color_str.startswith("rgb(") and color_str.endswith(")"):
            values = tuple(int(v.strip()) for v in color_str[4:-1].split(","))
        elif color_str.startswith("#"):
            hex_color = color_str[1:]
            if len(hex_color) == 3:
                hex_color = "".join(c * 2 for c in hex_color)
            values = tuple(int(hex_color[i : i + 2], 16) for i in (0, 2, 4))
        else:
            return None
    except ValueError:
        return None

    if len(values) != 3 or not all(0 <= v <= 255 for v in values):
        return None
    return values  # type: ignore[return-value]


def _rgb(values: tuple[int, int, int]) -> str:
    return f"rgb({values[0]}, {values[1]}, {values[2]})"


def _contrast_text(background: tuple[int, int, int]) -> tuple[int, int, int]:
    r, g, b = background
    luminance = 0.299 * r + 0.587 * g + 0.114 * b
    return (0, 0, 0) if luminance > 160 else (255, 255, 255)


def _download_from_url(url: str, timeout: float = DEFAULT_LOGO_TIMEOUT) -> bytes | None:
    """Download file content from a URL."""
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.get(url)
            if response.status_code == 200:
                return response.content
            logger.warning(f"Logo download returned {response.status_code}: {url}")
    except httpx.HTTPError as e:
        logger.warning(f"Logo download failed for {url}: {e}")
    return None


def _is_url(value: str | None) -> bool:
    return bool(value) and value.startswith(("http://", "https://"))


def _decode_image(value: str | None) -> bytes | None:
    """Image bytes from a data URL or bare base64. URLs are left to ``fetch_logo``."""
    if not value or _is_url(value):
        return None
    if value.startswith("data:"):
        value = value.partition(",")[2]
    try:
        data = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Card design logo is not valid base64, using default logo")
        return None
    return data or None


# ============================================
# Pass generator
# ============================================

class PassGenerator:
    def __init__(
        self,
        team_id: str,
        pass_type_id: str,
        web_service_url: str,
        certificate_provider: CertificateProvider | None = None,
        assets_dir: Path | None = None,
        logo_timeout: float = DEFAULT_LOGO_TIMEOUT,
    ):
        self.team_id = team_id
        self.pass_type_id = pass_type_id
        self.web_service_url = web_service_url
        self._certificate_provider = certificate_provider

        # Pass assets directory (relative to project root)
        self.assets_dir = assets_dir or Path(__file__).parent.parent.parent / "pass_assets"
        self.logo_timeout = logo_timeout
        self._logo_cache: dict[str, bytes] = {}
        self._logo_lock = threading.Lock()

    @property
    def certificate_provider(self) -> CertificateProvider:
        # Unpinned generators follow the process-wide provider across reloads
        if self._certificate_provider is not None:
            return self._certificate_provider
        return get_certificate_provider()

    def _balance_field(self, card: LoyaltyCard, balance: int) -> dict:
        design = card.design
        if isinstance(design, StampsDesign):
            return {"key": "balance", "label": "STAMPS", "value": f"{balance}/{design.max_stamps}"}
        if isinstance(design, PointsDesign):
            return {"key": "balance", "label": "POINTS", "value": balance}
        return {"key": "balance", "label": "VISITS", "value": balance}

    def _terms(self, card: LoyaltyCard) -> str:
        design = card.design
        if isinstance(design, StampsDesign):
            reward = design.reward_description or "a reward"
            return f"Earn 1 stamp per visit. Collect {design.max_stamps} stamps for {reward}."
        if isinstance(design, PointsDesign):
            reward = design.reward_description or "a reward"
            return f"Collect {design.reward_threshold} points for {reward}. Points do not expire."
        return "Show this card at every visit."

    def create_pass_json(
        self,
        card: LoyaltyCard,
        serial_number: str,
        balance: int,
        business: dict | None = None,
        customer: dict | None = None,
        auth_token: str | None = None,
        voided: bool = False,
    ) -> dict:
        """Create the pass.json content. Personalized passes carry web service fields."""
        design = card.design

        org_name = (business or {}).get("name") or card.name
        background = _parse_rgb(design.background_color) or DEFAULT_BACKGROUND
        foreground = _parse_rgb(design.text_color) or _contrast_text(background)
        label = _parse_rgb(design.primary_color) or foreground

        secondary_fields = []
        reward_description = getattr(design, "reward_description", None)
        if reward_description:
            secondary_fields.append({"key": "reward", "label": "REWARD", "value": reward_description})
        if customer and customer.get("name"):
            secondary_fields.append({"key": "member", "label": "MEMBER", "value": customer["name"]})

        back_fields = [{"key": "terms", "label": "Terms & Conditions", "value": self._terms(card)}]
        if business and business.get("website"):
            back_fields.append({"key": "website", "label": "Website", "value": business["website"]})

        customer_id = customer.get("id") if customer else None
        barcode = {
            "message": build_qr_payload(serial_number, card.id, customer_id),
            "format": "PKBarcodeFormatQR",
            "messageEncoding": "iso-8859-1",
        }

        pass_json = {
            "formatVersion": 1,
            "passTypeIdentifier": self.pass_type_id,
            "teamIdentifier": self.team_id,
            "serialNumber": serial_number,
            "organizationName": org_name,
            "description": f"{design.name or card.name} Loyalty Card",
            "logoText": org_name,
            "foregroundColor": _rgb(foreground),
            "backgroundColor": _rgb(background),
            "labelColor": _rgb(label),
            "storeCard": {
                "primaryFields": [self._balance_field(card, balance)],
                "backFields": back_fields,
            },
            "barcode": barcode,
            "barcodes": [dict(barcode)],
        }

        if secondary_fields:
            pass_json["storeCard"]["secondaryFields"] = secondary_fields

        if auth_token:
            pass_json["webServiceURL"] = self.web_service_url
            pass_json["authenticationToken"] = auth_token

        if voided:
            pass_json["voided"] = True

        return pass_json

    def fetch_logo(self, card: LoyaltyCard) -> bytes | None:
        """
        Resolve the design logo to bytes before signing.

        URL logos are downloaded with ``logo_timeout`` and cached once
        fetched; failed downloads are retried on the next build.
        """
        value = card.design.logo
        if not _is_url(value):
            return _decode_image(value)

        with self._logo_lock:
            cached = self._logo_cache.get(value)
        if cached is not None:
            return cached

        data = _download_from_url(value, timeout=self.logo_timeout)
        if data:
            with self._logo_lock:
                if len(self._logo_cache) >= LOGO_CACHE_SIZE:
                    self._logo_cache.pop(next(iter(self._logo_cache)))
                self._logo_cache[value] = data
        return data

    def _get_asset_files(self, card: LoyaltyCard, logo: bytes | None = None) -> dict[str, bytes]:
        """Load pass images: default icons, design logo or default logo."""
        files = {}

        for filename in ICON_FILES:
            filepath = self.assets_dir / filename
            if filepath.exists():
                files[filename] = filepath.read_bytes()

        logo_data = logo or _decode_image(card.design.logo)
        if logo_data:
            for filename in LOGO_FILES:
                files[filename] = logo_data
        else:
            for filename in LOGO_FILES:
                filepath = self.assets_dir / filename
                if filepath.exists():
                    files[filename] = filepath.read_bytes()

        return files

    def build_files(
        self,
        card: LoyaltyCard,
        serial_number: str,
        balance: int,
        logo: bytes | None = None,
        **personalization,
    ) -> dict[str, bytes]:
        """pass.json plus images: everything the manifest covers."""
        files = self._get_asset_files(card, logo)
        pass_json = self.create_pass_json(card, serial_number, balance, **personalization)
        files["pass.json"] = json.dumps(pass_json, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return files

    def generate_pass(
        self,
        card: LoyaltyCard,
        serial_number: str,
        balance: int,
        business: dict | None = None,
        customer: dict | None = None,
        auth_token: str | None = None,
        voided: bool = False,
        logo: bytes | None = None,
    ) -> bytes:
        """
        Generate a complete signed .pkpass archive.

        ``logo`` is the design logo as resolved by ``fetch_logo``; without it
        only inline (data URL or base64) logos are used.
        """
        material = self.certificate_provider.get_material()

        files = self.build_files(
            card,
            serial_number,
            balance,
            logo=logo,
            business=business,
            customer=customer,
            auth_token=auth_token,
            voided=voided,
        )
        manifest_data = build_manifest(files)
        signature = sign_manifest(manifest_data, material)
        return package_pass(files, manifest_data, signature)


def create_pass_generator() -> PassGenerator:
    """Factory function to create PassGenerator from settings."""
    from app.core.config import get_web_service_url, settings
    assets_dir = Path(settings.pass_assets_dir)
    if not assets_dir.is_absolute():
        assets_dir = Path(__file__).parent.parent.parent / assets_dir

    return PassGenerator(
        team_id=settings.apple_team_id,
        pass_type_id=settings.apple_pass_type_id,
        web_service_url=get_web_service_url(),
        assets_dir=assets_dir,
        logo_timeout=min(settings.logo_download_timeout_seconds, settings.signing_timeout_seconds),
    )
