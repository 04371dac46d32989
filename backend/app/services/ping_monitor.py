"""
Liveness probing: ICMP first, TCP port fan-out when ICMP is inconclusive.

A plain ICMP timeout cannot tell "host down" from "host drops ICMP", so in
that case a handful of well-known TCP ports are tried in parallel. Any
accepted connection means the host is up behind an ICMP filter ("blocked").
An explicit "unreachable" reply ends the probe as offline straight away.

Probing never raises: every failure becomes a result with status "error".
"""
import asyncio
import logging
import platform
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional, Sequence

from app.config import settings
from app.exceptions import ProbeError
from app.services.mac_discovery import get_mac_from_arp, lookup_vendor

logger = logging.getLogger(__name__)

# Common Windows and Linux service ports
DEFAULT_PROBE_PORTS = (
    22,    # SSH
    80,    # HTTP
    443,   # HTTPS
    445,   # SMB
    3389,  # RDP
    135,   # RPC
    139,   # NetBIOS
    21,    # FTP
    23,    # Telnet
    3306,  # MySQL
    5432,  # PostgreSQL
    1433,  # SQL Server
    8080,  # HTTP alt
)

UNREACHABLE_MARKERS = ("unreachable", "destination host", "network is unreachable")

ONLINE = "online"
OFFLINE = "offline"
BLOCKED = "blocked"
ERROR = "error"


@dataclass
class IcmpResult:
    alive: bool
    response_time: Optional[float] = None
    unreachable: bool = False
    output: str = ""


@dataclass
class ProbeResult:
    ip: str
    status: str
    response_time: Optional[float] = None
    method: Optional[str] = None
    mac: Optional[str] = None
    vendor: Optional[str] = None
    open_ports: List[int] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


def _ping_command(ip: str, timeout: int) -> List[str]:
    if platform.system().lower() == "windows":
        return ["ping", "-n", "1", "-w", str(timeout * 1000), ip]
    return ["ping", "-c", "1", "-W", str(timeout), "-n", ip]


def parse_ping_output(output: str, returncode: int) -> IcmpResult:
    """Interpret the output of a single-echo ping run."""
    lowered = output.lower()
    unreachable = any(marker in lowered for marker in UNREACHABLE_MARKERS)

    rtt = None
    # Linux: "time=0.456 ms"; Windows: "time=2ms" / "time<1ms"
    match = re.search(r"time[=<]\s*([\d.]+)\s*ms", output, re.IGNORECASE)
    if match:
        rtt = float(match.group(1))

    # Windows exits 0 on "Destination host unreachable" replies, so the exit
    # code alone does not mean the host answered
    alive = returncode == 0 and not unreachable and (match is not None or "ttl=" in lowered)
    return IcmpResult(alive=alive, response_time=rtt if alive else None, unreachable=unreachable, output=output)


async def icmp_ping(ip: str, timeout: Optional[int] = None) -> IcmpResult:
    """One ICMP echo through the system ping binary. Raises ProbeError if ping cannot run."""
    timeout = settings.PING_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        proc = await asyncio.create_subprocess_exec(
            *_ping_command(ip, timeout),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise ProbeError(f"cannot run ping: {e}") from e
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout + 3)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return IcmpResult(alive=False)
    return parse_ping_output(stdout.decode("utf-8", errors="replace"), proc.returncode)


async def tcp_probe_port(ip: str, port: int, timeout: Optional[float] = None) -> bool:
    timeout = settings.TCP_PROBE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout=timeout)
    except (asyncio.TimeoutError, OSError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def tcp_probe(ip: str, ports: Sequence[int] = DEFAULT_PROBE_PORTS, timeout: Optional[float] = None) -> List[int]:
    """Try every port concurrently; returns the ones that accepted a connection."""
    results = await asyncio.gather(*[tcp_probe_port(ip, port, timeout) for port in ports])
    return [port for port, is_open in zip(ports, results) if is_open]


async def _discover_mac(result: ProbeResult) -> ProbeResult:
    try:
        result.mac = await get_mac_from_arp(result.ip)
    except Exception as e:
        logger.debug("MAC lookup for %s failed: %s", result.ip, e)
        result.mac = None
    result.vendor = lookup_vendor(result.mac)
    return result


async def smart_ping(ip: str, probe_ports: Sequence[int] = DEFAULT_PROBE_PORTS) -> ProbeResult:
    try:
        icmp = await icmp_ping(ip)

        if icmp.alive:
            return await _discover_mac(ProbeResult(
                ip=ip, status=ONLINE, response_time=icmp.response_time, method="icmp",
            ))

        if icmp.unreachable:
            return ProbeResult(ip=ip, status=OFFLINE, method="icmp")

        # Timed out: either down or dropping ICMP
        open_ports = await tcp_probe(ip, probe_ports)
        if open_ports:
            return await _discover_mac(ProbeResult(
                ip=ip, status=BLOCKED, method="tcp", open_ports=open_ports,
            ))
        return ProbeResult(ip=ip, status=OFFLINE, method="tcp")
    except ProbeError as e:
        logger.warning("Probe of %s failed: %s", ip, e)
        return ProbeResult(ip=ip, status=ERROR, error=str(e))
    except Exception as e:
        logger.exception("Unexpected error probing %s", ip)
        return ProbeResult(ip=ip, status=ERROR, error=str(e))


async def smart_ping_batch(
    ips: Iterable[str],
    concurrency: Optional[int] = None,
    probe_ports: Sequence[int] = DEFAULT_PROBE_PORTS,
    probe=None,
) -> Dict[str, ProbeResult]:
    """
    Probe ips in sequential chunks of `concurrency`; each chunk runs fully in
    parallel and completes before the next starts. Duplicate addresses keep
    the last result.
    """
    concurrency = settings.PING_CONCURRENCY if concurrency is None else concurrency
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    probe = probe or (lambda ip: smart_ping(ip, probe_ports))

    addresses = list(ips)
    results: Dict[str, ProbeResult] = {}
    for start in range(0, len(addresses), concurrency):
        chunk = addresses[start:start + concurrency]
        for result in await asyncio.gather(*[probe(ip) for ip in chunk]):
            results[result.ip] = result
    return results


def get_summary(results: Dict[str, ProbeResult]) -> dict:
    values = list(results.values())
    latencies = [r.response_time for r in values if r.response_time is not None]
    return {
        "total": len(values),
        "online": sum(1 for r in values if r.status == ONLINE),
        "offline": sum(1 for r in values if r.status == OFFLINE),
        "blocked": sum(1 for r in values if r.status == BLOCKED),
        "error": sum(1 for r in values if r.status == ERROR),
        "avg_response_time": round(sum(latencies) / len(latencies), 2) if latencies else None,
    }
