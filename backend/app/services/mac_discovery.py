"""
MAC address discovery from the local neighbor (ARP) table.

After a host answers a probe the kernel normally holds a neighbor entry for
it; reading that entry gives the responder's hardware address, which the
conflict detector compares across probes. Only hosts on a directly attached
L2 segment have entries. A missing entry is not an error.
"""

import asyncio
import logging
import platform
import re
from typing import Dict, Optional

from app.config import settings

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r"([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}")
INCOMPLETE_MACS = {"00:00:00:00:00:00", "FF:FF:FF:FF:FF:FF"}

# First 3 bytes of MAC → vendor, for the devices most often seen on office LANs
OUI_PREFIXES: Dict[str, str] = {
    "00:0C:29": "VMware",
    "00:50:56": "VMware",
    "00:15:5D": "Microsoft Hyper-V",
    "08:00:27": "VirtualBox",
    "02:42:AC": "Docker",
    "00:1B:21": "Intel",
    "3C:FD:FE": "Intel",
    "00:14:22": "Dell",
    "18:66:DA": "Dell",
    "00:25:90": "Super Micro",
    "00:00:0C": "Cisco",
    "70:B5:E8": "Cisco",
    "88:51:FB": "Hewlett Packard",
    "00:E0:4C": "Realtek",
    "B8:27:EB": "Raspberry Pi",
    "DC:A6:32": "Raspberry Pi",
    "00:11:32": "Synology",
    "00:80:77": "Brother",
    "00:1E:8F": "Canon",
    "F4:F5:D8": "Google",
}


def normalize_mac(mac: Optional[str]) -> Optional[str]:
    """"aa-bb-cc-dd-ee-ff" -> "AA:BB:CC:DD:EE:FF"; None for anything else."""
    if not mac:
        return None
    match = MAC_PATTERN.search(mac)
    if not match:
        return None
    return match.group(0).upper().replace("-", ":")


def lookup_vendor(mac: Optional[str]) -> Optional[str]:
    mac = normalize_mac(mac)
    if not mac:
        return None
    return OUI_PREFIXES.get(mac[:8])


def parse_neighbor_output(output: str, ip: str) -> Optional[str]:
    """
    First MAC on a line mentioning ip. Handles `ip neigh` / `arp -n` (Linux)
    and `arp -a` (Windows, dash separated) output.
    """
    if not output:
        return None
    ip_token = re.compile(rf"(?<![\d.]){re.escape(ip)}(?![\d.])")
    for line in output.splitlines():
        if not ip_token.search(line):
            continue
        mac = normalize_mac(line)
        if mac and mac not in INCOMPLETE_MACS:
            return mac
    return None


def _neighbor_command(ip: str) -> list:
    if platform.system().lower() == "windows":
        return ["arp", "-a", ip]
    return ["ip", "neigh", "show", ip]


async def get_mac_from_arp(ip: str, timeout: Optional[float] = None) -> Optional[str]:
    """Neighbor-table MAC for ip, or None when there is no usable entry."""
    timeout = settings.ARP_LOOKUP_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        proc = await asyncio.create_subprocess_exec(
            *_neighbor_command(ip),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.debug("Neighbor lookup for %s timed out", ip)
            return None
    except (OSError, ValueError) as e:
        logger.debug("Neighbor lookup for %s failed: %s", ip, e)
        return None

    return parse_neighbor_output(stdout.decode("utf-8", errors="replace"), ip)
