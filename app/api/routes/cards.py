from fastapi import APIRouter, Depends

from app.api.deps import get_apple_wallet_service
from app.api.routes.passes import pkpass_response
from app.services.wallets import AppleWalletService

router = APIRouter()


@router.post("/{card_id}/wallet-pass")
def preview_wallet_pass(
    card_id: str,
    apple: AppleWalletService = Depends(get_apple_wallet_service),
):
    """Unpersonalized pass for a card design, for previewing on a device."""
    pass_data = apple.generate_preview(card_id)
    return pkpass_response(pass_data, f"preview-{card_id}")
