from fastapi import APIRouter, Depends

from app.api.deps import get_pass_coordinator
from app.domain.schemas import CertificateDiagnostics
from app.services.wallets import PassCoordinator

router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "healthy"}


@router.get("/health/certificates", response_model=CertificateDiagnostics)
def certificate_health(coordinator: PassCoordinator = Depends(get_pass_coordinator)):
    """Signing certificate diagnostics: every check, passed or failed."""
    return coordinator.get_certificate_diagnostics()
