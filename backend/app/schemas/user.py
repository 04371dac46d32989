from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class RoleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: RoleResponse
    is_active: bool
    last_login: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserBrief(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None

    model_config = {"from_attributes": True}
