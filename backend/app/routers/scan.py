from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.models.user import User
from app.middleware.rbac import get_current_user, require_operator_or_above
from app.services.auth import log_audit
from app.services.notifier import notifier
from app.services.scan_coordinator import ScanCoordinator
from app.schemas.ping import ScanRequest, ScanStatusResponse

router = APIRouter(prefix="/api/scan", tags=["Network Scan"])

scan_coordinator = ScanCoordinator(notifier=notifier)


def get_scan_coordinator() -> ScanCoordinator:
    return scan_coordinator


@router.post("", response_model=ScanStatusResponse, status_code=202)
async def start_scan(
    request: Request,
    payload: ScanRequest,
    current_user: User = Depends(require_operator_or_above()),
    coordinator: ScanCoordinator = Depends(get_scan_coordinator),
    db: AsyncSession = Depends(get_db),
):
    """Start an ICMP sweep of a CIDR. 409 while another scan is running."""
    status = await coordinator.start(payload.cidr.strip())
    await log_audit(
        db, "scan_started",
        user_id=current_user.id, username=current_user.username,
        resource_type="cidr", resource_id=payload.cidr,
        source_ip=request.client.host if request.client else None,
    )
    return status


@router.get("/status", response_model=ScanStatusResponse)
async def scan_status(
    coordinator: ScanCoordinator = Depends(get_scan_coordinator),
    _: User = Depends(get_current_user),
):
    return coordinator.status()
