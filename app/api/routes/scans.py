from fastapi import APIRouter, BackgroundTasks, Depends

from app.api.deps import get_pass_coordinator
from app.domain.schemas import BalanceResult, ScanRequest
from app.services.wallets import PassCoordinator

router = APIRouter()


@router.post("", response_model=BalanceResult)
def record_scan(
    data: ScanRequest,
    background_tasks: BackgroundTasks,
    coordinator: PassCoordinator = Depends(get_pass_coordinator),
):
    """Apply a staff scan and trigger push notification.

    ``code`` is the scanned barcode payload or a bare serial number. Devices
    are notified after the response is sent; push failures never fail the scan.
    """
    result = coordinator.scan(
        data.code,
        delta=data.delta,
        description=data.description,
        staff_id=data.staff_id,
    )
    background_tasks.add_task(coordinator.notify_pass_updated, result.serial_number)
    return result
