from app.models.user import User, Role, AuditLog
from app.models.device import Device
from app.models.network_segment import NetworkSegment
from app.models.ip_address import IpAddress, IpStatus
from app.models.ping import PingHistory
from app.models.system_event import SystemEvent

__all__ = [
    "User", "Role", "AuditLog",
    "Device",
    "NetworkSegment",
    "IpAddress", "IpStatus",
    "PingHistory",
    "SystemEvent",
]
