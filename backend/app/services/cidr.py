"""
IPv4 CIDR arithmetic on unsigned 32-bit integers.

Addresses are handled as ints in [0, 2**32); a segment's usable hosts are the
contiguous range [first_usable, last_usable], so enumeration is a plain range
and membership is one mask-and-compare.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Tuple

from app.exceptions import InvalidFormat

MAX_IPV4 = 0xFFFFFFFF

CIDR_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$")
IP_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


@dataclass(frozen=True)
class CidrInfo:
    network_address: int
    broadcast_address: int
    first_usable: int
    last_usable: int
    total_hosts: int
    usable_hosts: int
    prefix: int

    @property
    def netmask(self) -> int:
        return prefix_to_mask(self.prefix)

    def as_dict(self) -> dict:
        return {
            "network_address": long_to_ip(self.network_address),
            "broadcast_address": long_to_ip(self.broadcast_address),
            "first_usable": long_to_ip(self.first_usable) if self.usable_hosts else None,
            "last_usable": long_to_ip(self.last_usable) if self.usable_hosts else None,
            "netmask": long_to_ip(self.netmask),
            "total_hosts": self.total_hosts,
            "usable_hosts": self.usable_hosts,
            "prefix": self.prefix,
        }


def prefix_to_mask(prefix: int) -> int:
    if prefix == 0:
        return 0
    return (MAX_IPV4 << (32 - prefix)) & MAX_IPV4


def ip_to_long(ip: str) -> int:
    """Dotted quad -> int. Raises InvalidFormat."""
    if not isinstance(ip, str) or not IP_RE.match(ip.strip()):
        raise InvalidFormat(f"Invalid IPv4 address: {ip!r}")
    octets = [int(p) for p in ip.strip().split(".")]
    if any(o > 255 for o in octets):
        raise InvalidFormat(f"Invalid IPv4 address: {ip!r}")
    return (octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]


def long_to_ip(value: int) -> str:
    """int -> dotted quad. Raises InvalidFormat outside 0..2**32-1."""
    if not 0 <= value <= MAX_IPV4:
        raise InvalidFormat(f"Value out of IPv4 range: {value}")
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def is_valid_ip(ip: str) -> bool:
    try:
        ip_to_long(ip)
    except InvalidFormat:
        return False
    return True


def parse_cidr(cidr: str) -> CidrInfo:
    """
    Parse "a.b.c.d/prefix". The address is masked down to its network, so
    "192.168.1.77/24" describes the same range as "192.168.1.0/24".

    /31 and /32 have no usable hosts here: nothing is enumerated for them.
    """
    if not isinstance(cidr, str) or not CIDR_RE.match(cidr.strip()):
        raise InvalidFormat(f"Invalid CIDR format: {cidr!r}. Example: 192.168.1.0/24")
    address, prefix_str = cidr.strip().split("/")
    prefix = int(prefix_str)
    if prefix > 32:
        raise InvalidFormat(f"Invalid CIDR prefix: /{prefix}")
    mask = prefix_to_mask(prefix)
    network = ip_to_long(address) & mask
    broadcast = network | (~mask & MAX_IPV4)
    total = broadcast - network + 1

    if total > 2:
        first, last, usable = network + 1, broadcast - 1, total - 2
    else:
        first, last, usable = network, broadcast, 0

    return CidrInfo(
        network_address=network,
        broadcast_address=broadcast,
        first_usable=first,
        last_usable=last,
        total_hosts=total,
        usable_hosts=usable,
        prefix=prefix,
    )


def is_in_cidr(ip: str, cidr: str) -> bool:
    try:
        info = parse_cidr(cidr)
        return (ip_to_long(ip) & info.netmask) == info.network_address
    except InvalidFormat:
        return False


def is_usable_in(ip: str, info: CidrInfo) -> bool:
    """True when ip is one of the enumerable host addresses of info."""
    if not info.usable_hosts:
        return False
    try:
        value = ip_to_long(ip)
    except InvalidFormat:
        return False
    return info.first_usable <= value <= info.last_usable


def iter_usable(info: CidrInfo) -> Iterator[str]:
    if not info.usable_hosts:
        return
    for value in range(info.first_usable, info.last_usable + 1):
        yield long_to_ip(value)


def ip_sort_key(ip: str) -> Tuple[int, ...]:
    """Numeric sort key: "10.0.0.2" sorts before "10.0.0.10"."""
    return tuple(int(part) for part in ip.split("."))


def sort_ips(ips: Iterable[str], descending: bool = False) -> List[str]:
    return sorted(ips, key=ip_sort_key, reverse=descending)
