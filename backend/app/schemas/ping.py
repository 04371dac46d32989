from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import datetime


class ProbeResultResponse(BaseModel):
    ip: str
    status: str
    response_time: Optional[float] = None
    method: Optional[str] = None
    mac: Optional[str] = None
    vendor: Optional[str] = None
    open_ports: List[int] = []
    has_conflict: bool = False
    previous_mac: Optional[str] = None
    ip_id: Optional[int] = None
    hostname: Optional[str] = None
    ip_status: Optional[str] = None


class PingSummary(BaseModel):
    total: int
    online: int
    offline: int
    blocked: int
    error: int
    avg_response_time: Optional[float] = None


class SegmentPingResponse(BaseModel):
    segment_id: int
    segment_name: str
    results: Dict[str, ProbeResultResponse]
    summary: PingSummary
    checked_at: datetime


class PingHistoryResponse(BaseModel):
    id: int
    ip_id: int
    ip_address: str
    status: str
    method: Optional[str] = None
    response_time: Optional[float] = None
    mac_address: Optional[str] = None
    previous_mac: Optional[str] = None
    has_conflict: bool
    checked_at: datetime

    model_config = {"from_attributes": True}


class HistoryStats(BaseModel):
    total_checks: int
    online_checks: int
    offline_checks: int
    uptime_percent: Optional[float] = None
    avg_response_time: Optional[float] = None


class IpHistoryResponse(BaseModel):
    history: List[PingHistoryResponse]
    stats: HistoryStats


class LatestStatus(BaseModel):
    status: str
    response_time: Optional[float] = None
    checked_at: datetime
    mac: Optional[str] = None
    has_conflict: bool = False
    previous_mac: Optional[str] = None


class ConflictResponse(BaseModel):
    ip_address: str
    current_mac: Optional[str] = None
    previous_mac: Optional[str] = None
    first_detected: datetime
    last_detected: datetime
    occurrences: int


class ScanRequest(BaseModel):
    cidr: str


class ScanStatusResponse(BaseModel):
    state: str
    cidr: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    hosts_scanned: int = 0
    hosts_found: List[str] = []
    error: Optional[str] = None
