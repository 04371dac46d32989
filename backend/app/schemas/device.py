from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime
import re

MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")


def _validate_mac(v: Optional[str]) -> Optional[str]:
    if v is None or not v.strip():
        return None
    if not MAC_RE.match(v.strip()):
        raise ValueError(f"Invalid MAC address: {v}")
    return v.strip().upper().replace("-", ":")


class DeviceCreate(BaseModel):
    name: str
    device_type: Optional[str] = None
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    assigned_user: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("mac_address")
    @classmethod
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        return _validate_mac(v)


class DeviceUpdate(BaseModel):
    name: Optional[str] = None
    device_type: Optional[str] = None
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    assigned_user: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("mac_address")
    @classmethod
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        return _validate_mac(v)


class DeviceBrief(BaseModel):
    id: int
    name: str
    device_type: Optional[str] = None
    hostname: Optional[str] = None
    mac_address: Optional[str] = None

    model_config = {"from_attributes": True}


class DeviceResponse(DeviceBrief):
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    assigned_user: Optional[str] = None
    is_active: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
