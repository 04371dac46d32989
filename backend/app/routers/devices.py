"""Device directory: the hardware an address can be assigned to."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.middleware.rbac import get_current_user, require_operator_or_above
from app.models.device import Device
from app.models.ip_address import IpAddress
from app.models.user import User
from app.schemas.device import DeviceCreate, DeviceResponse, DeviceUpdate
from app.schemas.ip_address import IpAddressResponse
from app.services.auth import log_audit
from app.services.cidr import ip_sort_key

router = APIRouter(prefix="/api/devices", tags=["Devices"])


async def _device_or_404(db: AsyncSession, device_id: int) -> Device:
    device = await db.get(Device, device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


async def _audit(db: AsyncSession, request: Request, user: User, action: str, device: Device) -> None:
    await log_audit(
        db, action,
        user_id=user.id, username=user.username,
        resource_type="device", resource_id=str(device.id), details=device.name,
        source_ip=request.client.host if request.client else None,
    )


@router.get("/", response_model=List[DeviceResponse])
async def list_devices(
    device_type: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    query = select(Device)
    if not include_inactive:
        query = query.where(Device.is_active.is_(True))
    if device_type:
        query = query.where(Device.device_type == device_type)
    if search:
        term = f"%{search}%"
        query = query.where(or_(Device.name.ilike(term), Device.hostname.ilike(term), Device.mac_address.ilike(term)))
    result = await db.execute(query.order_by(Device.name))
    return result.scalars().all()


@router.post("/", response_model=DeviceResponse, status_code=201)
async def create_device(
    request: Request,
    payload: DeviceCreate,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    device = Device(**payload.model_dump())
    db.add(device)
    await db.commit()
    await db.refresh(device)
    await _audit(db, request, current_user, "device_created", device)
    return device


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return await _device_or_404(db, device_id)


@router.get("/{device_id}/ips", response_model=List[IpAddressResponse])
async def get_device_ips(
    device_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """Addresses currently linked to the device, in numeric order."""
    await _device_or_404(db, device_id)
    result = await db.execute(
        select(IpAddress)
        .options(
            selectinload(IpAddress.segment),
            selectinload(IpAddress.device),
            selectinload(IpAddress.reserved_by_user),
        )
        .where(IpAddress.device_id == device_id)
    )
    return sorted(result.scalars().all(), key=lambda ip: ip_sort_key(ip.ip_address))


@router.patch("/{device_id}", response_model=DeviceResponse)
async def update_device(
    request: Request,
    device_id: int,
    payload: DeviceUpdate,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    device = await _device_or_404(db, device_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(device, field, value)
    await db.commit()
    await db.refresh(device)
    await _audit(db, request, current_user, "device_updated", device)
    return device
