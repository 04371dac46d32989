from datetime import datetime, timezone
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.database import get_db
from app.models.ip_address import IpAddress
from app.models.user import User
from app.middleware.rbac import get_current_user, require_admin, require_operator_or_above
from app.services import address_pool, conflict_detector, ping_monitor
from app.services.cidr import ip_sort_key
from app.services.notifier import notifier
from app.schemas.ping import (
    SegmentPingResponse, ProbeResultResponse, IpHistoryResponse, LatestStatus, ConflictResponse,
)

router = APIRouter(prefix="/api/ping", tags=["Ping"])


def _latest_map(rows: dict) -> Dict[str, LatestStatus]:
    return {
        ip: LatestStatus(
            status=h.status,
            response_time=h.response_time,
            checked_at=h.checked_at,
            mac=h.mac_address,
            has_conflict=bool(h.has_conflict),
            previous_mac=h.previous_mac,
        )
        for ip, h in rows.items()
    }


def _enrich(ip: IpAddress, result: ping_monitor.ProbeResult, check) -> ProbeResultResponse:
    return ProbeResultResponse(
        **{k: v for k, v in result.as_dict().items() if k != "error"},
        has_conflict=check.has_conflict if check else False,
        previous_mac=check.previous_mac if check else None,
        ip_id=ip.id,
        hostname=ip.hostname,
        ip_status=ip.status,
    )


@router.post("/segment/{segment_id}", response_model=SegmentPingResponse)
async def ping_segment(
    segment_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_operator_or_above()),
):
    """Probe every address of a segment and record the results."""
    segment = await address_pool.get_segment(db, segment_id)
    result = await db.execute(select(IpAddress).where(IpAddress.segment_id == segment.id))
    ips = sorted(result.scalars().all(), key=lambda r: ip_sort_key(r.ip_address))
    now = datetime.now(timezone.utc)

    if not ips:
        return SegmentPingResponse(
            segment_id=segment.id, segment_name=segment.name, results={},
            summary=ping_monitor.get_summary({}), checked_at=now,
        )

    results = await ping_monitor.smart_ping_batch(
        [ip.ip_address for ip in ips], concurrency=settings.PING_CONCURRENCY,
    )
    checks = await conflict_detector.record_probe_results(db, ips, results, now=now, notifier=notifier)

    return SegmentPingResponse(
        segment_id=segment.id,
        segment_name=segment.name,
        results={
            ip.ip_address: _enrich(ip, results[ip.ip_address], checks.get(ip.ip_address))
            for ip in ips if ip.ip_address in results
        },
        summary=ping_monitor.get_summary(results),
        checked_at=now,
    )


@router.get("/segment/{segment_id}/latest", response_model=Dict[str, LatestStatus])
async def get_segment_latest(
    segment_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """Latest recorded status per address of the segment, without probing."""
    await address_pool.get_segment(db, segment_id)
    result = await db.execute(select(IpAddress.ip_address).where(IpAddress.segment_id == segment_id))
    addresses = list(result.scalars().all())
    return _latest_map(await conflict_detector.latest_status(db, addresses))


@router.get("/latest", response_model=Dict[str, LatestStatus])
async def get_all_latest(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return _latest_map(await conflict_detector.latest_status(db))


@router.post("/ip/{ip_id}", response_model=ProbeResultResponse)
async def ping_single_ip(
    ip_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_operator_or_above()),
):
    ip = await address_pool.get_ip(db, ip_id)
    result = await ping_monitor.smart_ping(ip.ip_address)
    checks = await conflict_detector.record_probe_results(
        db, [ip], {ip.ip_address: result}, notifier=notifier,
    )
    return _enrich(ip, result, checks.get(ip.ip_address))


@router.get("/ip/{ip_id}/history", response_model=IpHistoryResponse)
async def get_ip_history(
    ip_id: int,
    limit: int = Query(100, ge=1, le=5000),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await address_pool.get_ip(db, ip_id)
    history = await conflict_detector.get_ip_history(db, ip_id, limit=limit, start=start, end=end)
    return {"history": history, "stats": conflict_detector.history_stats(history)}


@router.get("/conflicts", response_model=List[ConflictResponse])
async def get_conflicts(
    hours: int = Query(24, ge=1, le=24 * 30),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return await conflict_detector.list_conflicts(db, hours=hours)


@router.delete("/cleanup")
async def cleanup_history(
    days: int = Query(settings.PING_HISTORY_RETENTION_DAYS, ge=1),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin()),
):
    deleted = await conflict_detector.cleanup_history(db, days=days)
    return {"deleted": deleted, "message": f"Deleted {deleted} old ping records"}
