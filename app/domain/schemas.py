from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ============================================
# Loyalty Card Design Schemas
# ============================================

class _DesignBase(BaseModel):
    """Styling shared by every loyalty type (keys as stored in the design JSON)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    primary_color: Optional[str] = Field(default=None, alias="primaryColor")
    background_color: str = Field(default="#ffffff", alias="backgroundColor")
    text_color: Optional[str] = Field(default=None, alias="textColor")
    logo: Optional[str] = None  # http(s) URL, data URL or base64


class StampsDesign(_DesignBase):
    loyalty_type: Literal["stamps"] = Field(default="stamps", alias="loyaltyType")
    max_stamps: int = Field(default=10, alias="maxStamps", ge=1)
    reward_description: Optional[str] = Field(default=None, alias="rewardDescription")


class PointsDesign(_DesignBase):
    loyalty_type: Literal["points"] = Field(default="points", alias="loyaltyType")
    reward_threshold: int = Field(..., alias="rewardThreshold", ge=1)
    reward_description: Optional[str] = Field(default=None, alias="rewardDescription")
    points_per_currency: Optional[float] = Field(default=None, alias="pointsPerCurrency")


class MembershipDesign(_DesignBase):
    loyalty_type: Literal["membership"] = Field(default="membership", alias="loyaltyType")


CardDesign = Annotated[
    Union[StampsDesign, PointsDesign, MembershipDesign],
    Field(discriminator="loyalty_type"),
]

_card_design_adapter = TypeAdapter(CardDesign)


def parse_card_design(data: dict | None) -> CardDesign:
    """Parse a stored design document; a missing loyaltyType means stamps."""
    data = dict(data or {})
    data.setdefault("loyaltyType", "stamps")
    return _card_design_adapter.validate_python(data)


class LoyaltyCard(BaseModel):
    id: int | str
    business_id: Optional[int | str] = None
    name: str
    is_active: bool = True
    updated_at: Optional[datetime] = None
    design: CardDesign


# ============================================
# Pass Issuing & Balance Schemas
# ============================================

class IssuePassRequest(BaseModel):
    customer_id: int | str
    card_id: int | str


class IssuedPass(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    serial_number: str = Field(alias="serialNumber")
    download_url: str = Field(alias="downloadUrl")


class ScanRequest(BaseModel):
    """A staff scan: ``code`` is the barcode payload or a bare serial number."""

    code: str = Field(..., min_length=1)
    delta: int = 1
    description: Optional[str] = None
    staff_id: Optional[int | str] = None


class BalanceResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    serial_number: str = Field(alias="serialNumber")
    previous_balance: int = Field(alias="previousBalance")
    new_balance: int = Field(alias="newBalance")
    amount_added: int = Field(alias="amountAdded")
    reward_earned: bool = Field(alias="rewardEarned")
    reward_message: Optional[str] = Field(default=None, alias="rewardMessage")


class TransactionResponse(BaseModel):
    id: int | str
    customer_pass_id: int | str
    type: str
    amount: int
    description: Optional[str] = None
    staff_id: Optional[int | str] = None
    created_at: Optional[datetime] = None


# ============================================
# Wallet Web Service Schemas
# ============================================

class DeviceRegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    push_token: str = Field(..., alias="pushToken", min_length=1, max_length=256)


class SerialNumbersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    serial_numbers: list[str] = Field(alias="serialNumbers")
    last_updated: str = Field(alias="lastUpdated")


class DeviceLogPayload(BaseModel):
    logs: list[str] = []


# ============================================
# Operations
# ============================================

class CertificateDiagnostics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(alias="isValid")
    diagnostics: list[str] = []
