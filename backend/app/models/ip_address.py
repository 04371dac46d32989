import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class IpStatus(str, enum.Enum):
    free = "free"
    reserved = "reserved"
    in_use = "in_use"
    blocked = "blocked"
    gateway = "gateway"


class IpAddress(Base):
    __tablename__ = "ip_addresses"

    id = Column(Integer, primary_key=True, index=True)
    segment_id = Column(Integer, ForeignKey("network_segments.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(15), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=IpStatus.free.value)
    hostname = Column(String(100), nullable=True)
    mac_address = Column(String(17), nullable=True)  # "AA:BB:CC:DD:EE:FF"
    # Weak references: no cascade from devices/users
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="SET NULL"), nullable=True)
    reserved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reserved_until = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    segment = relationship("NetworkSegment", back_populates="ip_addresses")
    device = relationship("Device")
    reserved_by_user = relationship("User", foreign_keys=[reserved_by])

    __table_args__ = (
        Index("ix_ip_addresses_segment", "segment_id"),
        Index("ix_ip_addresses_status", "status"),
        Index("ix_ip_addresses_device", "device_id"),
    )
