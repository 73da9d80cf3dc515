"""
Apple Wallet web service protocol.

Mounted at /wallet, so the webServiceURL embedded in passes is {BASE_URL}/wallet.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Response
from pydantic import ValidationError

from app.api.deps import get_apple_wallet_service, get_auth_token_service
from app.core.config import settings
from app.core.security import require_pass_auth
from app.core.timestamps import (
    format_update_tag,
    parse_datetime,
    parse_http_date,
    parse_update_tag,
    to_http_date,
)
from app.domain.errors import PassNotFoundError
from app.domain.schemas import DeviceLogPayload, DeviceRegistrationRequest, SerialNumbersResponse
from app.repositories.customer_pass import CustomerPassRepository
from app.repositories.device import DeviceRepository
from app.services.auth_tokens import AuthTokenService
from app.services.wallets import AppleWalletService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/v1/devices/{device_library_id}/registrations/{pass_type_id}/{serial_number}")
def register_device_endpoint(
    device_library_id: str,
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    body: Any = Body(None),
    auth_tokens: AuthTokenService = Depends(get_auth_token_service),
):
    """Register a device for push notifications."""
    require_pass_auth(serial_number, authorization, auth_tokens)

    try:
        registration = DeviceRegistrationRequest.model_validate(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="pushToken required")

    created = DeviceRepository.register(
        device_library_id, pass_type_id, serial_number, registration.push_token
    )
    logger.info(
        f"Device {'registered' if created else 're-registered'}: "
        f"{device_library_id[:20]}... for pass {serial_number[:8]}..."
    )
    return Response(status_code=201 if created else 200)


@router.delete("/v1/devices/{device_library_id}/registrations/{pass_type_id}/{serial_number}")
def unregister_device_endpoint(
    device_library_id: str,
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    auth_tokens: AuthTokenService = Depends(get_auth_token_service),
):
    """Unregister a device from push notifications."""
    require_pass_auth(serial_number, authorization, auth_tokens)

    DeviceRepository.unregister(device_library_id, serial_number)
    logger.info(f"Device unregistered: {device_library_id[:20]}... for pass {serial_number[:8]}...")
    return Response(status_code=200)


@router.get("/v1/devices/{device_library_id}/registrations/{pass_type_id}")
def get_serial_numbers(
    device_library_id: str,
    pass_type_id: str,
    passesUpdatedSince: str | None = None,  # noqa: N803 - Apple Wallet API requirement
):
    """Get list of passes registered to this device that have been updated."""
    updated_since = parse_update_tag(passesUpdatedSince)

    serial_numbers, latest = DeviceRepository.list_updated_serials(
        device_library_id, pass_type_id, updated_since
    )
    if not serial_numbers:
        return Response(status_code=204)

    last_updated = latest or datetime.now(timezone.utc)
    return SerialNumbersResponse(
        serial_numbers=serial_numbers,
        last_updated=format_update_tag(last_updated),
    ).model_dump(by_alias=True)


@router.get("/v1/passes/{pass_type_id}/{serial_number}")
def get_latest_pass(
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    if_modified_since: str | None = Header(None, alias="If-Modified-Since"),
    auth_tokens: AuthTokenService = Depends(get_auth_token_service),
    apple: AppleWalletService = Depends(get_apple_wallet_service),
):
    """Download the latest version of a pass."""
    require_pass_auth(serial_number, authorization, auth_tokens)

    if settings.apple_pass_type_id and pass_type_id != settings.apple_pass_type_id:
        raise PassNotFoundError()

    customer_pass = CustomerPassRepository.get_by_serial(serial_number)
    if not customer_pass:
        raise PassNotFoundError()

    # HTTP dates have whole-second precision
    last_modified = parse_datetime(customer_pass.get("last_updated"))
    if last_modified:
        last_modified = last_modified.replace(microsecond=0)

    client_date = parse_http_date(if_modified_since)
    if client_date and last_modified and last_modified <= client_date:
        return Response(status_code=304, headers={"Last-Modified": to_http_date(last_modified)})

    pass_data = apple.build_pass(customer_pass)

    headers = {}
    if last_modified:
        headers["Last-Modified"] = to_http_date(last_modified)
    return Response(
        content=pass_data,
        media_type="application/vnd.apple.pkpass",
        headers=headers,
    )


@router.post("/v1/log")
def receive_logs(payload: DeviceLogPayload):
    """Receive error logs from Apple Wallet."""
    for log in payload.logs:
        logger.warning(f"Wallet log: {log}")
    return Response(status_code=200)
