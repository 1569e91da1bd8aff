from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime
from uuid import UUID

InstallationStatus = Literal["installed", "updated", "uninstalled"]


class InstallationCreate(BaseModel):
    app_version_id: UUID
    device_id: str
    status: InstallationStatus = "installed"
    installation_date: Optional[datetime] = None
    device_info: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class InstallationResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    app_version_id: str
    device_id: str
    status: str
    installation_date: Optional[datetime] = None
    device_info: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    app_version: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class InstallationStatsResponse(BaseModel):
    total: int
    active: int
    by_version: Dict[str, int] = Field(default_factory=dict)
