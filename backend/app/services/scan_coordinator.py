"""
Network scan coordinator.

One ICMP sweep over a CIDR at a time. The coordinator owns the scan state
(idle / running / error); a start request while a scan is running is
rejected, not queued. The sweep itself runs as a background task.
"""
import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.exceptions import ProbeError, ScanInProgress, SegmentTooLarge
from app.services.cidr import iter_usable, parse_cidr, sort_ips
from app.services.ping_monitor import ERROR, OFFLINE, ONLINE, ProbeResult, icmp_ping, smart_ping_batch

logger = logging.getLogger(__name__)


class ScanState(str, enum.Enum):
    idle = "idle"
    running = "running"
    error = "error"


async def icmp_only_probe(ip: str) -> ProbeResult:
    try:
        icmp = await icmp_ping(ip, timeout=settings.SCAN_PING_TIMEOUT_SECONDS)
    except ProbeError as e:
        return ProbeResult(ip=ip, status=ERROR, method="icmp", error=str(e))
    return ProbeResult(
        ip=ip,
        status=ONLINE if icmp.alive else OFFLINE,
        response_time=icmp.response_time,
        method="icmp",
    )


class ScanCoordinator:
    def __init__(
        self,
        probe: Optional[Callable[[str], Awaitable[ProbeResult]]] = None,
        notifier=None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self._probe = probe or icmp_only_probe
        self._notifier = notifier
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.state = ScanState.idle
        self.cidr: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.hosts_scanned = 0
        self.hosts_found: List[str] = []
        self.error: Optional[str] = None

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "cidr": self.cidr,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "hosts_scanned": self.hosts_scanned,
            "hosts_found": list(self.hosts_found),
            "error": self.error,
        }

    async def start(self, cidr: str) -> dict:
        info = parse_cidr(cidr)
        if info.usable_hosts > settings.MAX_SEGMENT_HOSTS:
            raise SegmentTooLarge(f"Scan range too large: {info.usable_hosts} hosts")
        hosts = list(iter_usable(info))

        async with self._lock:
            if self.state == ScanState.running:
                raise ScanInProgress(f"A scan of {self.cidr} is already in progress")
            self.state = ScanState.running
            self.cidr = cidr
            self.started_at = datetime.now(timezone.utc)
            self.finished_at = None
            self.hosts_scanned = len(hosts)
            self.hosts_found = []
            self.error = None
            self._task = asyncio.create_task(self._run(cidr, hosts))

        logger.info("Starting network scan of %s (%d hosts)", cidr, len(hosts))
        return self.status()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    async def _run(self, cidr: str, hosts: List[str]) -> None:
        try:
            results = await smart_ping_batch(hosts, concurrency=settings.SCAN_CONCURRENCY, probe=self._probe)
            found = sort_ips(ip for ip, r in results.items() if r.status == ONLINE)
        except Exception as e:
            logger.error("Network scan of %s failed: %s", cidr, e)
            async with self._lock:
                self.state = ScanState.error
                self.error = str(e)
                self.finished_at = datetime.now(timezone.utc)
            self._notify("scan_failed", f"Scan of {cidr} failed: {e}", cidr=cidr)
            await self._record("error", "scan_failed", cidr, f"Scan of {cidr} failed", details=str(e))
            return

        async with self._lock:
            self.state = ScanState.idle
            self.hosts_found = found
            self.finished_at = datetime.now(timezone.utc)
        logger.info("Scan of %s complete. Found %d hosts", cidr, len(found))
        self._notify("scan_complete", f"Scan of {cidr} complete: {len(found)}/{len(hosts)} hosts alive",
                     cidr=cidr, hosts=found)
        await self._record("info", "scan_complete", cidr, f"Scan of {cidr} found {len(found)} hosts")

    def _notify(self, event: str, message: str, **data) -> None:
        if self._notifier is not None:
            self._notifier.notify(event, message, **data)

    async def _record(self, level: str, event_type: str, cidr: str, message: str, details: Optional[str] = None):
        from app.routers.system_events import log_system_event
        await log_system_event(
            level, "scan", event_type, message,
            resource_type="cidr", resource_id=cidr, details=details,
            session_factory=self._session_factory,
        )
