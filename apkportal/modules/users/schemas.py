from pydantic import BaseModel, EmailStr
from typing import Optional, Dict, Any
from datetime import datetime


class DeviceInfo(BaseModel):
    device_id: str
    model: Optional[str] = None
    os_version: Optional[str] = None
    app_version: Optional[str] = None
    last_connected: Optional[datetime] = None
    installation_id: Optional[str] = None


class ProfileUpsert(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None
    device_info: Optional[Dict[str, Any]] = None
    last_active: Optional[datetime] = None
    is_online: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PreferencesUpdate(BaseModel):
    preferences: Dict[str, Any]


class OnlineStatusUpdate(BaseModel):
    is_online: bool


class OnlineCountResponse(BaseModel):
    count: int
