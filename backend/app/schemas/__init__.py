from app.schemas.auth import Token, TokenData, LoginRequest
from app.schemas.user import UserResponse, RoleResponse, UserBrief
from app.schemas.device import DeviceCreate, DeviceUpdate, DeviceResponse, DeviceBrief
from app.schemas.segment import (
    SegmentCreate, SegmentUpdate, SegmentResponse, SegmentCreateResponse, SegmentStats,
)
from app.schemas.ip_address import (
    IpAddressResponse, IpAddressPage, IpAssignRequest, IpReserveRequest, IpNotesUpdate,
)
from app.schemas.ping import (
    ProbeResultResponse, PingSummary, SegmentPingResponse, PingHistoryResponse,
    IpHistoryResponse, ConflictResponse, ScanRequest, ScanStatusResponse,
)

__all__ = [
    "Token", "TokenData", "LoginRequest",
    "UserResponse", "RoleResponse", "UserBrief",
    "DeviceCreate", "DeviceUpdate", "DeviceResponse", "DeviceBrief",
    "SegmentCreate", "SegmentUpdate", "SegmentResponse", "SegmentCreateResponse", "SegmentStats",
    "IpAddressResponse", "IpAddressPage", "IpAssignRequest", "IpReserveRequest", "IpNotesUpdate",
    "ProbeResultResponse", "PingSummary", "SegmentPingResponse", "PingHistoryResponse",
    "IpHistoryResponse", "ConflictResponse", "ScanRequest", "ScanStatusResponse",
]
