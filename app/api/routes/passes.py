from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response

from app.api.deps import get_apple_wallet_service, get_pass_coordinator
from app.domain.schemas import IssuedPass, IssuePassRequest, TransactionResponse
from app.services.wallets import AppleWalletService, PassCoordinator

router = APIRouter()


def pkpass_response(pass_data: bytes, filename: str) -> Response:
    safe_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "")
    if not safe_name:
        safe_name = "loyalty-card"

    return Response(
        content=pass_data,
        media_type="application/vnd.apple.pkpass",
        headers={
            "Content-Disposition": f'attachment; filename="{safe_name}.pkpass"',
        },
    )


@router.post("", response_model=IssuedPass, status_code=201)
def issue_pass(
    data: IssuePassRequest,
    coordinator: PassCoordinator = Depends(get_pass_coordinator),
):
    """Issue the pass for a customer on a loyalty card (idempotent per pair)."""
    return coordinator.issue_pass(data.customer_id, data.card_id)


@router.get("/{serial_number}")
def download_pass(
    serial_number: str,
    apple: AppleWalletService = Depends(get_apple_wallet_service),
):
    """Download the current .pkpass file for a pass."""
    pass_data = apple.generate_pass_for_serial(serial_number)
    return pkpass_response(pass_data, f"loyalty-{serial_number[:8]}")


@router.post("/{serial_number}/deactivate")
def deactivate_pass(
    serial_number: str,
    background_tasks: BackgroundTasks,
    coordinator: PassCoordinator = Depends(get_pass_coordinator),
):
    """Void a pass; devices holding it are told to refresh."""
    customer_pass = coordinator.deactivate_pass(serial_number)
    background_tasks.add_task(coordinator.notify_pass_updated, serial_number)
    return {
        "serialNumber": serial_number,
        "isActive": bool(customer_pass.get("is_active", False)),
    }


@router.get("/{serial_number}/transactions", response_model=list[TransactionResponse])
def list_pass_transactions(
    serial_number: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    coordinator: PassCoordinator = Depends(get_pass_coordinator),
):
    """Ledger for a pass, newest first."""
    return coordinator.list_transactions(serial_number, limit=limit, offset=offset)
