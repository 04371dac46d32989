from pydantic import BaseModel, field_validator
from typing import Optional, Dict, List
from datetime import datetime
from app.services.cidr import ip_to_long, is_valid_ip, long_to_ip


def _validate_ip(v: Optional[str]) -> Optional[str]:
    if v is None or not v.strip():
        return None
    if not is_valid_ip(v):
        raise ValueError(f"Invalid IP address: {v}")
    # "10.0.0.01" -> "10.0.0.1"
    return long_to_ip(ip_to_long(v))


class SegmentCreate(BaseModel):
    name: str
    cidr: str
    vlan_id: Optional[int] = None
    gateway: Optional[str] = None
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    tags: Optional[str] = None
    description: Optional[str] = None

    # CIDR syntax is left to the CIDR engine so the error surfaces as InvalidFormat
    @field_validator("cidr")
    @classmethod
    def strip_cidr(cls, v: str) -> str:
        return v.strip()

    @field_validator("gateway", "dns_primary", "dns_secondary")
    @classmethod
    def validate_addresses(cls, v: Optional[str]) -> Optional[str]:
        return _validate_ip(v)

    @field_validator("vlan_id")
    @classmethod
    def validate_vlan(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 4094:
            raise ValueError("VLAN ID must be between 1 and 4094")
        return v


class SegmentUpdate(BaseModel):
    """CIDR is deliberately absent: it cannot change after creation."""
    name: Optional[str] = None
    vlan_id: Optional[int] = None
    gateway: Optional[str] = None
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    tags: Optional[str] = None
    description: Optional[str] = None

    @field_validator("gateway", "dns_primary", "dns_secondary")
    @classmethod
    def validate_addresses(cls, v: Optional[str]) -> Optional[str]:
        return _validate_ip(v)


class SegmentStats(BaseModel):
    total: int = 0
    used: int = 0
    free: int = 0
    reserved: int = 0
    usage_percent: int = 0


class SegmentResponse(BaseModel):
    id: int
    name: str
    cidr: str
    vlan_id: Optional[int] = None
    gateway: Optional[str] = None
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    tags: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    stats: Optional[SegmentStats] = None

    model_config = {"from_attributes": True}


class SegmentCreateResponse(SegmentResponse):
    ips_generated: int


class SegmentStatusBreakdown(BaseModel):
    id: int
    name: str
    cidr: str
    vlan_id: Optional[int] = None
    total: int
    by_status: Dict[str, int]


class CidrInfoResponse(BaseModel):
    network_address: str
    broadcast_address: str
    first_usable: Optional[str] = None
    last_usable: Optional[str] = None
    netmask: str
    total_hosts: int
    usable_hosts: int
    prefix: int


class SegmentStatsSummary(BaseModel):
    total_segments: int
    total_ips: int
    total_used: int
    total_free: int
    overall_usage_percent: int


class SegmentStatsOverview(BaseModel):
    summary: SegmentStatsSummary
    segments: List[SegmentStatusBreakdown]
