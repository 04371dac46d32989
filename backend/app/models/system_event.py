from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class SystemEvent(Base):
    """
    Operational log of automated actions: network scans, scheduled ping
    sweeps, history retention, reservation reclaim, notification failures.

    Separate from AuditLog, which records user-initiated actions.
    level:   info | warning | error
    source:  scan | ping_sweep | retention | reservations | notifier
    """
    __tablename__ = "system_events"

    id            = Column(Integer, primary_key=True, index=True)
    timestamp     = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    level         = Column(String(20), nullable=False, index=True)
    source        = Column(String(50), nullable=False, index=True)
    event_type    = Column(String(100), nullable=False)               # scan_complete, ip_conflict …
    resource_type = Column(String(50), nullable=True)                 # segment / ip_address
    resource_id   = Column(String(200), nullable=True)
    message       = Column(String(500), nullable=False)
    details       = Column(Text, nullable=True)
