"""
IP conflict detection and ping-history bookkeeping.

Two different MACs answering for the same IP within a short window means two
hosts share the address. Each fresh observation is compared with the latest
earlier observation that carried a MAC; history itself is never modified,
only the new entry is annotated.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.device import Device
from app.models.ip_address import IpAddress
from app.models.ping import PingHistory
from app.services.ping_monitor import ONLINE, ProbeResult

logger = logging.getLogger(__name__)


@dataclass
class ConflictCheck:
    has_conflict: bool = False
    previous_mac: Optional[str] = None


async def detect_conflict(
    db: AsyncSession,
    ip: str,
    mac: Optional[str],
    observed_at: datetime,
    window: Optional[timedelta] = None,
) -> ConflictCheck:
    """
    Compare mac with the most recent prior MAC seen for ip within `window`
    before observed_at. A lookup failure counts as "no conflict".
    """
    if not mac:
        return ConflictCheck()
    window = window or timedelta(minutes=settings.CONFLICT_WINDOW_MINUTES)
    try:
        result = await db.execute(
            select(PingHistory.mac_address)
            .where(
                PingHistory.ip_address == ip,
                PingHistory.mac_address.isnot(None),
                PingHistory.checked_at >= observed_at - window,
                PingHistory.checked_at <= observed_at,
            )
            .order_by(PingHistory.checked_at.desc(), PingHistory.id.desc())
            .limit(1)
        )
        previous = result.scalar_one_or_none()
    except Exception as e:
        logger.warning("Conflict lookup for %s failed: %s", ip, e)
        return ConflictCheck()

    if previous and previous != mac:
        logger.warning("IP CONFLICT detected: %s - current MAC %s, previous MAC %s", ip, mac, previous)
        return ConflictCheck(has_conflict=True, previous_mac=previous)
    return ConflictCheck()


async def record_probe_results(
    db: AsyncSession,
    ips: Iterable[IpAddress],
    results: Dict[str, ProbeResult],
    now: Optional[datetime] = None,
    notifier=None,
) -> Dict[str, ConflictCheck]:
    """
    Write one PingHistory row per probed address, flag MAC conflicts, and
    push newly seen MACs onto the address record and its linked device.
    Returns the conflict check per address.
    """
    now = now or datetime.now(timezone.utc)
    checks: Dict[str, ConflictCheck] = {}
    entries = []

    for ip in ips:
        result = results.get(ip.ip_address)
        if result is None:
            continue
        check = await detect_conflict(db, ip.ip_address, result.mac, now)
        checks[ip.ip_address] = check

        if result.mac:
            if ip.mac_address != result.mac:
                await db.execute(
                    update(IpAddress).where(IpAddress.id == ip.id).values(mac_address=result.mac)
                    .execution_options(synchronize_session=False)
                )
            if ip.device_id:
                await _sync_device_mac(db, ip.device_id, result.mac)

        entries.append(PingHistory(
            ip_id=ip.id,
            ip_address=ip.ip_address,
            status=result.status,
            method=result.method,
            response_time=result.response_time,
            mac_address=result.mac,
            previous_mac=check.previous_mac,
            has_conflict=check.has_conflict,
            checked_at=now,
        ))

        if check.has_conflict and notifier is not None:
            notifier.notify(
                "conflict_detected",
                f"IP conflict on {ip.ip_address}: {result.mac} (was {check.previous_mac})",
                ip=ip.ip_address, mac=result.mac, previous_mac=check.previous_mac,
            )

    db.add_all(entries)
    await db.commit()
    return checks


async def _sync_device_mac(db: AsyncSession, device_id: int, mac: str) -> None:
    result = await db.execute(select(Device.mac_address).where(Device.id == device_id))
    current = result.scalar_one_or_none()
    if current != mac:
        await db.execute(
            update(Device).where(Device.id == device_id).values(mac_address=mac)
            .execution_options(synchronize_session=False)
        )
        logger.info("Updated device %s MAC to %s", device_id, mac)


def history_stats(history: List[PingHistory]) -> dict:
    """Uptime percentage and mean latency over a window of history rows."""
    total = len(history)
    online = sum(1 for h in history if h.status == ONLINE)
    latencies = [h.response_time for h in history if h.response_time is not None]
    return {
        "total_checks": total,
        "online_checks": online,
        "offline_checks": total - online,
        "uptime_percent": round(online / total * 100, 2) if total else None,
        "avg_response_time": round(sum(latencies) / len(latencies), 2) if latencies else None,
    }


async def get_ip_history(
    db: AsyncSession,
    ip_id: int,
    limit: int = 100,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[PingHistory]:
    q = select(PingHistory).where(PingHistory.ip_id == ip_id)
    if start:
        q = q.where(PingHistory.checked_at >= start)
    if end:
        q = q.where(PingHistory.checked_at <= end)
    q = q.order_by(PingHistory.checked_at.desc(), PingHistory.id.desc()).limit(limit)
    result = await db.execute(q)
    return list(result.scalars().all())


async def latest_status(db: AsyncSession, ip_addresses: Optional[List[str]] = None) -> Dict[str, PingHistory]:
    """Most recent history row per address (optionally restricted to ip_addresses)."""
    latest = select(
        PingHistory.ip_address, func.max(PingHistory.checked_at).label("max_checked_at"),
    ).group_by(PingHistory.ip_address)
    if ip_addresses is not None:
        if not ip_addresses:
            return {}
        latest = latest.where(PingHistory.ip_address.in_(ip_addresses))
    latest = latest.subquery()

    result = await db.execute(
        select(PingHistory)
        .join(latest, (PingHistory.ip_address == latest.c.ip_address)
              & (PingHistory.checked_at == latest.c.max_checked_at))
        .order_by(PingHistory.id)
    )
    return {row.ip_address: row for row in result.scalars().all()}


async def list_conflicts(db: AsyncSession, hours: int = 24, limit: int = 100) -> List[dict]:
    """Conflict-flagged entries of the last `hours`, grouped per address."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    result = await db.execute(
        select(PingHistory)
        .where(PingHistory.has_conflict.is_(True), PingHistory.checked_at >= since)
        .order_by(PingHistory.checked_at.desc())
        .limit(limit)
    )
    grouped: Dict[str, dict] = {}
    for record in result.scalars().all():
        entry = grouped.get(record.ip_address)
        if entry is None:
            grouped[record.ip_address] = {
                "ip_address": record.ip_address,
                "current_mac": record.mac_address,
                "previous_mac": record.previous_mac,
                "first_detected": record.checked_at,
                "last_detected": record.checked_at,
                "occurrences": 1,
            }
        else:
            entry["occurrences"] += 1
            entry["first_detected"] = min(entry["first_detected"], record.checked_at)
    return list(grouped.values())


async def cleanup_history(db: AsyncSession, days: Optional[int] = None) -> int:
    """Retention sweep: drop history older than `days`."""
    days = settings.PING_HISTORY_RETENTION_DAYS if days is None else days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        delete(PingHistory).where(PingHistory.checked_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Deleted %d ping history rows older than %d days", deleted, days)
    return deleted
