from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class Device(Base):
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    device_type = Column(String(50))  # pc, laptop, server, vm, switch, router, printer, ...
    hostname = Column(String(255), nullable=True)
    mac_address = Column(String(17), nullable=True, index=True)
    manufacturer = Column(String(100))
    model = Column(String(100))
    location = Column(String(200))
    assigned_user = Column(String(100))
    is_active = Column(Boolean, default=True)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
