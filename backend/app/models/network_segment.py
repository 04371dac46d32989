from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class NetworkSegment(Base):
    __tablename__ = "network_segments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    vlan_id = Column(Integer, nullable=True)
    cidr = Column(String(18), nullable=False, unique=True)  # network address form, e.g. "192.168.1.0/24"
    gateway = Column(String(15), nullable=True)
    dns_primary = Column(String(15), nullable=True)
    dns_secondary = Column(String(15), nullable=True)
    tags = Column(String(255), nullable=True)  # comma separated
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    ip_addresses = relationship(
        "IpAddress", back_populates="segment", cascade="all, delete-orphan", passive_deletes=True,
    )
