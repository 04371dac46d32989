"""Liveness probe history per IP address."""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, Boolean
from sqlalchemy.sql import func
from app.database import Base


class PingHistory(Base):
    """Append-only probe observations. Only the retention sweep deletes rows."""
    __tablename__ = "ping_history"

    id = Column(Integer, primary_key=True, index=True)
    ip_id = Column(Integer, ForeignKey("ip_addresses.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(15), nullable=False)
    status = Column(String(20), nullable=False)  # online, offline, timeout, error, blocked
    method = Column(String(10), nullable=True)   # icmp, tcp
    response_time = Column(Float, nullable=True)  # ms
    mac_address = Column(String(17), nullable=True)
    previous_mac = Column(String(17), nullable=True)  # set only when has_conflict
    has_conflict = Column(Boolean, default=False, nullable=False)
    checked_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_ping_history_ip_id", "ip_id"),
        Index("ix_ping_history_ip_ts", "ip_address", "checked_at"),
        Index("ix_ping_history_checked_at", "checked_at"),
        Index("ix_ping_history_conflict", "has_conflict"),
    )
