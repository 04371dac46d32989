from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime
from app.schemas.device import DeviceBrief, _validate_mac
from app.schemas.user import UserBrief


class SegmentBrief(BaseModel):
    id: int
    name: str
    vlan_id: Optional[int] = None
    cidr: str

    model_config = {"from_attributes": True}


class IpAddressResponse(BaseModel):
    id: int
    segment_id: int
    ip_address: str
    status: str
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    device_id: Optional[int] = None
    reserved_by: Optional[int] = None
    reserved_until: Optional[datetime] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    segment: Optional[SegmentBrief] = None
    device: Optional[DeviceBrief] = None
    reserved_by_user: Optional[UserBrief] = None

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class IpAddressPage(BaseModel):
    data: List[IpAddressResponse]
    pagination: Pagination


class IpAssignRequest(BaseModel):
    device_id: Optional[int] = None
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("mac_address")
    @classmethod
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        return _validate_mac(v)


class IpReserveRequest(BaseModel):
    reserved_until: Optional[datetime] = None
    notes: Optional[str] = None


class IpNotesUpdate(BaseModel):
    hostname: Optional[str] = None
    notes: Optional[str] = None


class IpStatusOption(BaseModel):
    value: str
    label: str
    color: str
