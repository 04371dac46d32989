"""
Address pool for a network segment.

A segment owns one ip_addresses row per usable host address, created in one
shot with the segment and removed only together with it. Status moves
between free / reserved / in_use / blocked / gateway through the functions
below; every transition is an UPDATE guarded on the status that was read, so
two requests racing for the same free address cannot both win.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.exceptions import (
    AddressConflict, InvalidFormat, InvalidState, NotFound, ResourceInUse, SegmentTooLarge,
)
from app.models.device import Device
from app.models.ip_address import IpAddress, IpStatus
from app.models.network_segment import NetworkSegment
from app.models.ping import PingHistory
from app.schemas.segment import SegmentCreate, SegmentUpdate
from app.services.cidr import (
    CidrInfo, ip_sort_key, ip_to_long, is_in_cidr, is_usable_in, iter_usable, long_to_ip, parse_cidr,
)

logger = logging.getLogger(__name__)

ASSIGNABLE = (IpStatus.free.value, IpStatus.reserved.value)
RELEASABLE = (IpStatus.in_use.value, IpStatus.reserved.value)
SQL_SORTABLE = {"status", "hostname", "mac_address", "created_at", "updated_at"}


# ── generation ────────────────────────────────────────────────────────────────

def generate_records(
    segment_id: Optional[int],
    cidr: str,
    gateway: Optional[str] = None,
    max_hosts: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Row dicts for every usable address of cidr, status "free", except the
    gateway which is "gateway". A gateway inside the CIDR but outside the
    usable range (network/broadcast address) gets one extra row.
    """
    limit = settings.MAX_SEGMENT_HOSTS if max_hosts is None else max_hosts
    info = parse_cidr(cidr)
    if info.usable_hosts > limit:
        raise SegmentTooLarge(
            f"Segment too large: {info.usable_hosts} usable hosts, maximum is {limit} (/20)"
        )
    if gateway and not is_in_cidr(gateway, cidr):
        raise InvalidFormat(f"Gateway {gateway} is not inside {cidr}")

    # Canonical dotted quad, so "10.0.0.01" still marks "10.0.0.1"
    gateway = long_to_ip(ip_to_long(gateway)) if gateway else None
    records = []
    for address in iter_usable(info):
        status = IpStatus.gateway.value if address == gateway else IpStatus.free.value
        records.append({"segment_id": segment_id, "ip_address": address, "status": status})

    if gateway and not is_usable_in(gateway, info):
        records.append({"segment_id": segment_id, "ip_address": gateway, "status": IpStatus.gateway.value})
    return records


def normalize_cidr(cidr: str) -> str:
    """"10.1.2.3/24" -> "10.1.2.0/24"."""
    info = parse_cidr(cidr)
    return f"{long_to_ip(info.network_address)}/{info.prefix}"


async def _find_overlap(db: AsyncSession, info: CidrInfo) -> Optional[NetworkSegment]:
    result = await db.execute(select(NetworkSegment))
    for segment in result.scalars().all():
        try:
            other = parse_cidr(segment.cidr)
        except InvalidFormat:
            continue
        if info.network_address <= other.broadcast_address and other.network_address <= info.broadcast_address:
            return segment
    return None


async def create_segment(db: AsyncSession, payload: SegmentCreate) -> Tuple[NetworkSegment, int]:
    """
    Validate everything, then insert the segment and its whole address set in
    one transaction. Returns (segment, number of address rows).
    """
    cidr = normalize_cidr(payload.cidr)
    info = parse_cidr(cidr)

    existing = await db.execute(select(NetworkSegment).where(NetworkSegment.cidr == cidr))
    if existing.scalar_one_or_none():
        raise AddressConflict(f"A segment with CIDR {cidr} already exists")

    # Fails with SegmentTooLarge / InvalidFormat before anything is written
    records = generate_records(None, cidr, payload.gateway)

    overlap = await _find_overlap(db, info)
    if overlap:
        raise AddressConflict(f"{cidr} overlaps existing segment {overlap.name} ({overlap.cidr})")

    data = payload.model_dump()
    data["cidr"] = cidr
    segment = NetworkSegment(**data)
    try:
        db.add(segment)
        await db.flush()
        for record in records:
            record["segment_id"] = segment.id
        if records:
            await db.execute(insert(IpAddress), records)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(segment)
    logger.info("Segment %s (%s) created with %d addresses", segment.name, cidr, len(records))
    return segment, len(records)


async def get_segment(db: AsyncSession, segment_id: int) -> NetworkSegment:
    result = await db.execute(select(NetworkSegment).where(NetworkSegment.id == segment_id))
    segment = result.scalar_one_or_none()
    if not segment:
        raise NotFound("Network segment not found")
    return segment


async def update_segment(db: AsyncSession, segment_id: int, payload: SegmentUpdate) -> NetworkSegment:
    """
    Update descriptive fields. A gateway change must name an address of this
    segment's pool that is free. The old gateway row goes back to free, or is
    removed when it was the extra network/broadcast row.
    """
    segment = await get_segment(db, segment_id)
    updates = payload.model_dump(exclude_unset=True)
    old_gateway = segment.gateway
    gateway_changed = "gateway" in updates and updates["gateway"] != old_gateway
    new_gateway = updates.get("gateway")

    new_row = None
    if gateway_changed and new_gateway:
        result = await db.execute(
            select(IpAddress).where(
                IpAddress.segment_id == segment.id, IpAddress.ip_address == new_gateway,
            )
        )
        new_row = result.scalar_one_or_none()
        if not new_row:
            raise InvalidState(f"Gateway {new_gateway} is not an address of segment {segment.cidr}")
        if new_row.status != IpStatus.free.value:
            raise InvalidState(f"Gateway {new_gateway} is {new_row.status}, only a free address can become the gateway")

    for key, value in updates.items():
        setattr(segment, key, value)

    if gateway_changed:
        if old_gateway:
            old_row = (
                IpAddress.segment_id == segment.id,
                IpAddress.ip_address == old_gateway,
                IpAddress.status == IpStatus.gateway.value,
            )
            if is_usable_in(old_gateway, parse_cidr(segment.cidr)):
                await db.execute(update(IpAddress).where(*old_row).values(status=IpStatus.free.value))
            else:
                # Network/broadcast gateway row only exists while it is the gateway
                old_ids = select(IpAddress.id).where(*old_row)
                await db.execute(
                    delete(PingHistory).where(PingHistory.ip_id.in_(old_ids))
                    .execution_options(synchronize_session=False)
                )
                await db.execute(delete(IpAddress).where(*old_row).execution_options(synchronize_session=False))
        if new_row is not None:
            result = await db.execute(
                update(IpAddress)
                .where(IpAddress.id == new_row.id, IpAddress.status == IpStatus.free.value)
                .values(status=IpStatus.gateway.value)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise AddressConflict(f"Gateway {new_gateway} changed status concurrently")

    await db.commit()
    await db.refresh(segment)
    return segment


async def delete_segment(db: AsyncSession, segment_id: int) -> NetworkSegment:
    """Delete a segment with its addresses and their history. Refused while any address is in use."""
    segment = await get_segment(db, segment_id)
    # Row locks make a concurrent assign wait for this transaction, then find its row gone
    statuses = await db.execute(
        select(IpAddress.status).where(IpAddress.segment_id == segment.id).with_for_update()
    )
    count = sum(1 for status in statuses.scalars() if status == IpStatus.in_use.value)
    if count > 0:
        raise ResourceInUse(f"Cannot delete segment. {count} IP(s) are still in use.", in_use=count)

    ip_ids = select(IpAddress.id).where(IpAddress.segment_id == segment.id)
    for stmt in (
        delete(PingHistory).where(PingHistory.ip_id.in_(ip_ids)),
        delete(IpAddress).where(IpAddress.segment_id == segment.id),
        delete(NetworkSegment).where(NetworkSegment.id == segment.id),
    ):
        await db.execute(stmt.execution_options(synchronize_session=False))
    await db.commit()
    logger.info("Segment %s (%s) deleted", segment.name, segment.cidr)
    return segment


# ── statistics ────────────────────────────────────────────────────────────────

async def status_counts(db: AsyncSession, segment_ids: Optional[List[int]] = None) -> Dict[int, Dict[str, int]]:
    """{segment_id: {status: count}}"""
    q = select(IpAddress.segment_id, IpAddress.status, func.count(IpAddress.id)).group_by(
        IpAddress.segment_id, IpAddress.status,
    )
    if segment_ids is not None:
        q = q.where(IpAddress.segment_id.in_(segment_ids))
    result = await db.execute(q)
    counts: Dict[int, Dict[str, int]] = defaultdict(dict)
    for segment_id, status, count in result.all():
        counts[segment_id][status] = count
    return counts


def summarize_counts(by_status: Dict[str, int]) -> Dict[str, int]:
    total = sum(by_status.values())
    used = by_status.get(IpStatus.in_use.value, 0)
    return {
        "total": total,
        "used": used,
        "free": by_status.get(IpStatus.free.value, 0),
        "reserved": by_status.get(IpStatus.reserved.value, 0),
        "usage_percent": round(used / total * 100) if total else 0,
    }


async def segment_stats(db: AsyncSession) -> dict:
    """Per-segment counts by status plus totals over every segment."""
    result = await db.execute(select(NetworkSegment).order_by(NetworkSegment.id))
    segments = result.scalars().all()
    counts = await status_counts(db)

    overall: Dict[str, int] = defaultdict(int)
    for by_status in counts.values():
        for status, count in by_status.items():
            overall[status] += count
    summary = summarize_counts(overall)

    return {
        "summary": {
            "total_segments": len(segments),
            "total_ips": summary["total"],
            "total_used": summary["used"],
            "total_free": summary["free"],
            "overall_usage_percent": summary["usage_percent"],
        },
        "segments": [
            {
                "id": s.id, "name": s.name, "cidr": s.cidr, "vlan_id": s.vlan_id,
                "total": sum(counts.get(s.id, {}).values()),
                "by_status": counts.get(s.id, {}),
            }
            for s in segments
        ],
    }


# ── addresses ─────────────────────────────────────────────────────────────────

async def get_ip(db: AsyncSession, ip_id: int) -> IpAddress:
    result = await db.execute(
        select(IpAddress)
        .options(
            selectinload(IpAddress.segment),
            selectinload(IpAddress.device),
            selectinload(IpAddress.reserved_by_user),
        )
        .where(IpAddress.id == ip_id)
        .execution_options(populate_existing=True)
    )
    ip = result.scalar_one_or_none()
    if not ip:
        raise NotFound("IP address not found")
    return ip


async def _transition(db: AsyncSession, ip: IpAddress, expected: str, **values) -> IpAddress:
    """UPDATE ... WHERE status = expected; zero rows means someone else moved it first."""
    result = await db.execute(
        update(IpAddress)
        .where(IpAddress.id == ip.id, IpAddress.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise AddressConflict(f"IP {ip.ip_address} was modified by another request")
    await db.commit()
    return await get_ip(db, ip.id)


async def assign(
    db: AsyncSession,
    ip_id: int,
    device_id: Optional[int] = None,
    hostname: Optional[str] = None,
    mac_address: Optional[str] = None,
    notes: Optional[str] = None,
) -> IpAddress:
    ip = await get_ip(db, ip_id)
    if ip.status == IpStatus.in_use.value:
        raise AddressConflict(f"IP {ip.ip_address} is already in use")
    if ip.status not in ASSIGNABLE:
        raise InvalidState(f"Cannot assign IP with status: {ip.status}")

    if device_id is not None:
        device = await db.execute(select(Device.id).where(Device.id == device_id))
        if device.scalar_one_or_none() is None:
            raise NotFound("Device not found")

    return await _transition(
        db, ip, ip.status,
        status=IpStatus.in_use.value,
        device_id=device_id,
        hostname=hostname or ip.hostname,
        mac_address=mac_address or ip.mac_address,
        notes=notes or ip.notes,
        reserved_by=None,
        reserved_until=None,
    )


async def release(db: AsyncSession, ip_id: int) -> IpAddress:
    ip = await get_ip(db, ip_id)
    if ip.status not in RELEASABLE:
        raise InvalidState(f"IP {ip.ip_address} is not currently assigned or reserved")
    return await _transition(
        db, ip, ip.status,
        status=IpStatus.free.value,
        device_id=None,
        hostname=None,
        mac_address=None,
        notes=None,
        reserved_by=None,
        reserved_until=None,
    )


async def reserve(
    db: AsyncSession,
    ip_id: int,
    user_id: int,
    until: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> IpAddress:
    ip = await get_ip(db, ip_id)
    if ip.status != IpStatus.free.value:
        raise InvalidState(f"Only free addresses can be reserved ({ip.ip_address} is {ip.status})")
    if until is not None and until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    return await _transition(
        db, ip, IpStatus.free.value,
        status=IpStatus.reserved.value,
        reserved_by=user_id,
        reserved_until=until,
        notes=notes or ip.notes,
    )


async def block(db: AsyncSession, ip_id: int, notes: Optional[str] = None) -> IpAddress:
    ip = await get_ip(db, ip_id)
    if ip.status != IpStatus.free.value:
        raise InvalidState(f"Only free addresses can be blocked ({ip.ip_address} is {ip.status})")
    return await _transition(db, ip, IpStatus.free.value, status=IpStatus.blocked.value, notes=notes or ip.notes)


async def unblock(db: AsyncSession, ip_id: int) -> IpAddress:
    ip = await get_ip(db, ip_id)
    if ip.status != IpStatus.blocked.value:
        raise InvalidState(f"IP {ip.ip_address} is not blocked")
    return await _transition(db, ip, IpStatus.blocked.value, status=IpStatus.free.value)


async def update_notes(
    db: AsyncSession, ip_id: int, hostname: Optional[str] = None, notes: Optional[str] = None,
) -> IpAddress:
    """Descriptive fields only; status changes go through assign/release/reserve/block."""
    ip = await get_ip(db, ip_id)
    if hostname is not None:
        ip.hostname = hostname
    if notes is not None:
        ip.notes = notes
    await db.commit()
    return await get_ip(db, ip_id)


async def find_free(db: AsyncSession, segment_id: int, count: int = 10) -> List[IpAddress]:
    """Lowest free addresses of the segment, in numeric order."""
    result = await db.execute(
        select(IpAddress)
        .options(
            selectinload(IpAddress.segment),
            selectinload(IpAddress.device),
            selectinload(IpAddress.reserved_by_user),
        )
        .where(IpAddress.segment_id == segment_id, IpAddress.status == IpStatus.free.value)
    )
    rows = sorted(result.scalars().all(), key=lambda r: ip_sort_key(r.ip_address))
    return rows[:count]


async def list_ips(
    db: AsyncSession,
    segment_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    sort_by: str = "ip_address",
    sort_order: str = "asc",
) -> Tuple[List[IpAddress], int]:
    """
    Filtered, paginated address listing. Sorting by ip_address is numeric and
    done in Python, since string order would put .10 before .2.
    """
    query = select(IpAddress).options(
        selectinload(IpAddress.segment),
        selectinload(IpAddress.device),
        selectinload(IpAddress.reserved_by_user),
    )
    if segment_id:
        query = query.where(IpAddress.segment_id == segment_id)
    if status:
        query = query.where(IpAddress.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            IpAddress.ip_address.like(pattern),
            IpAddress.hostname.like(pattern),
            IpAddress.mac_address.like(pattern),
            IpAddress.notes.like(pattern),
        ))

    descending = sort_order.lower() == "desc"
    offset = (max(page, 1) - 1) * limit

    if sort_by not in SQL_SORTABLE:
        result = await db.execute(query)
        rows = sorted(result.scalars().all(), key=lambda r: ip_sort_key(r.ip_address), reverse=descending)
        return rows[offset:offset + limit], len(rows)

    total = await db.execute(select(func.count()).select_from(query.subquery()))
    column = getattr(IpAddress, sort_by)
    query = query.order_by(column.desc() if descending else column.asc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total.scalar() or 0


async def reclaim_expired_reservations(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Return reservations whose reserved_until has passed to the free pool."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(IpAddress)
        .where(
            IpAddress.status == IpStatus.reserved.value,
            IpAddress.reserved_until.isnot(None),
            IpAddress.reserved_until < now,
        )
        .values(status=IpStatus.free.value, reserved_by=None, reserved_until=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.info("Reclaimed %d expired reservations", result.rowcount)
    return result.rowcount or 0
