import math
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.database import get_db
from app.models.ip_address import IpStatus
from app.models.user import User
from app.middleware.rbac import get_current_user, require_operator_or_above
from app.services import address_pool
from app.services.auth import log_audit
from app.schemas.ip_address import (
    IpAddressResponse, IpAddressPage, IpAssignRequest, IpReserveRequest,
    IpNotesUpdate, IpStatusOption, Pagination,
)

router = APIRouter(prefix="/api/ips", tags=["IP Addresses"])

STATUS_OPTIONS = [
    IpStatusOption(value=IpStatus.free.value, label="Free", color="green"),
    IpStatusOption(value=IpStatus.in_use.value, label="In Use", color="blue"),
    IpStatusOption(value=IpStatus.reserved.value, label="Reserved", color="orange"),
    IpStatusOption(value=IpStatus.blocked.value, label="Blocked", color="red"),
    IpStatusOption(value=IpStatus.gateway.value, label="Gateway", color="purple"),
]


async def _audit(db: AsyncSession, request: Request, user: User, action: str, ip) -> None:
    await log_audit(
        db, action,
        user_id=user.id, username=user.username,
        resource_type="ip_address", resource_id=str(ip.id),
        details={"ip_address": ip.ip_address, "status": ip.status, "device_id": ip.device_id},
        source_ip=request.client.host if request.client else None,
    )


@router.get("/statuses", response_model=List[IpStatusOption])
async def get_ip_statuses(_: User = Depends(get_current_user)):
    return STATUS_OPTIONS


@router.get("/find-free", response_model=List[IpAddressResponse])
async def find_free_ips(
    segment_id: int,
    count: int = Query(10, ge=1, le=256),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await address_pool.get_segment(db, segment_id)
    return await address_pool.find_free(db, segment_id, count)


@router.get("/", response_model=IpAddressPage)
async def list_ips(
    segment_id: Optional[int] = None,
    status: Optional[IpStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=5000),
    sort_by: str = "ip_address",
    sort_order: str = "asc",
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    rows, total = await address_pool.list_ips(
        db,
        segment_id=segment_id,
        status=status.value if status else None,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return IpAddressPage(
        data=[IpAddressResponse.model_validate(r) for r in rows],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get("/{ip_id}", response_model=IpAddressResponse)
async def get_ip(
    ip_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return await address_pool.get_ip(db, ip_id)


@router.patch("/{ip_id}", response_model=IpAddressResponse)
async def update_ip(
    request: Request,
    ip_id: int,
    payload: IpNotesUpdate,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.update_notes(db, ip_id, hostname=payload.hostname, notes=payload.notes)
    await _audit(db, request, current_user, "ip_updated", ip)
    return ip


@router.post("/{ip_id}/assign", response_model=IpAddressResponse)
async def assign_ip(
    request: Request,
    ip_id: int,
    payload: IpAssignRequest,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.assign(
        db, ip_id,
        device_id=payload.device_id,
        hostname=payload.hostname,
        mac_address=payload.mac_address,
        notes=payload.notes,
    )
    await _audit(db, request, current_user, "ip_assigned", ip)
    return ip


@router.post("/{ip_id}/release", response_model=IpAddressResponse)
async def release_ip(
    request: Request,
    ip_id: int,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.release(db, ip_id)
    await _audit(db, request, current_user, "ip_released", ip)
    return ip


@router.post("/{ip_id}/reserve", response_model=IpAddressResponse)
async def reserve_ip(
    request: Request,
    ip_id: int,
    payload: IpReserveRequest,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.reserve(
        db, ip_id, current_user.id, until=payload.reserved_until, notes=payload.notes,
    )
    await _audit(db, request, current_user, "ip_reserved", ip)
    return ip


@router.post("/{ip_id}/block", response_model=IpAddressResponse)
async def block_ip(
    request: Request,
    ip_id: int,
    payload: Optional[IpNotesUpdate] = None,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.block(db, ip_id, notes=payload.notes if payload else None)
    await _audit(db, request, current_user, "ip_blocked", ip)
    return ip


@router.post("/{ip_id}/unblock", response_model=IpAddressResponse)
async def unblock_ip(
    request: Request,
    ip_id: int,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    ip = await address_pool.unblock(db, ip_id)
    await _audit(db, request, current_user, "ip_unblocked", ip)
    return ip
