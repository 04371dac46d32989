from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from typing import List, Optional
from app.database import get_db
from app.models.network_segment import NetworkSegment
from app.models.user import User
from app.middleware.rbac import get_current_user, require_operator_or_above
from app.services import address_pool
from app.services.auth import log_audit
from app.services.cidr import parse_cidr
from app.schemas.segment import (
    SegmentCreate, SegmentUpdate, SegmentResponse, SegmentCreateResponse,
    SegmentStats, SegmentStatsOverview, CidrInfoResponse,
)

router = APIRouter(prefix="/api/segments", tags=["Network Segments"])

SORTABLE = {"name", "cidr", "vlan_id", "created_at"}


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.get("/", response_model=List[SegmentResponse])
async def list_segments(
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    query = select(NetworkSegment)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            NetworkSegment.name.like(pattern),
            NetworkSegment.cidr.like(pattern),
            NetworkSegment.tags.like(pattern),
        ))
    column = getattr(NetworkSegment, sort_by if sort_by in SORTABLE else "created_at")
    query = query.order_by(column.asc() if sort_order.lower() == "asc" else column.desc())
    result = await db.execute(query)
    segments = result.scalars().all()

    counts = await address_pool.status_counts(db, [s.id for s in segments])
    response = []
    for segment in segments:
        s = SegmentResponse.model_validate(segment)
        s.stats = SegmentStats(**address_pool.summarize_counts(counts.get(segment.id, {})))
        response.append(s)
    return response


@router.get("/stats", response_model=SegmentStatsOverview)
async def get_segment_stats(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return await address_pool.segment_stats(db)


@router.get("/calculate", response_model=CidrInfoResponse)
async def calculate_cidr(
    cidr: str = Query(..., description="e.g. 192.168.1.0/24"),
    _: User = Depends(get_current_user),
):
    return parse_cidr(cidr).as_dict()


@router.post("/", response_model=SegmentCreateResponse, status_code=201)
async def create_segment(
    request: Request,
    payload: SegmentCreate,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    segment, generated = await address_pool.create_segment(db, payload)

    await log_audit(
        db, "segment_created",
        user_id=current_user.id, username=current_user.username,
        resource_type="network_segment", resource_id=str(segment.id),
        details=f"Created segment {segment.name} ({segment.cidr}) with {generated} IP addresses",
        source_ip=_client_ip(request),
    )

    response = SegmentCreateResponse.model_validate({
        **SegmentResponse.model_validate(segment).model_dump(),
        "ips_generated": generated,
    })
    return response


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(
    segment_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    segment = await address_pool.get_segment(db, segment_id)
    counts = await address_pool.status_counts(db, [segment.id])
    s = SegmentResponse.model_validate(segment)
    s.stats = SegmentStats(**address_pool.summarize_counts(counts.get(segment.id, {})))
    return s


@router.patch("/{segment_id}", response_model=SegmentResponse)
async def update_segment(
    request: Request,
    segment_id: int,
    payload: SegmentUpdate,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    segment = await address_pool.update_segment(db, segment_id, payload)

    await log_audit(
        db, "segment_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="network_segment", resource_id=str(segment_id),
        details=payload.model_dump(exclude_unset=True),
        source_ip=_client_ip(request),
    )
    return segment


@router.delete("/{segment_id}")
async def delete_segment(
    request: Request,
    segment_id: int,
    current_user: User = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    segment = await address_pool.delete_segment(db, segment_id)

    await log_audit(
        db, "segment_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="network_segment", resource_id=str(segment_id),
        details=f"Deleted segment {segment.name} ({segment.cidr})",
        source_ip=_client_ip(request),
    )
    return {"message": "Segment and all its IPs deleted successfully"}
