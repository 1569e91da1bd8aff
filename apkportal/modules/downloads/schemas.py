from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional, Dict, Any, List
from uuid import UUID


class DownloadCreate(BaseModel):
    app_version_id: Optional[UUID] = None
    app_version: Optional[str] = None
    email: Optional[EmailStr] = None
    platform: str = "android"
    device_info: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_version(self):
        if not self.app_version_id and not self.app_version:
            raise ValueError("app_version_id or app_version is required")
        return self


class DownloadRecordResponse(BaseModel):
    success: bool = True
    synced: bool
    id: str
    message: str


class SyncResponse(BaseModel):
    synced: int
    failed: int
    deferred: int
    remaining: int
    dead_lettered: int = 0
    in_progress: bool = False


class OutboxEntryResponse(BaseModel):
    seq: int
    local_id: str
    idempotency_key: str
    table: str
    payload: Dict[str, Any]
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: float = 0
    created_at: Optional[str] = None
    dead_lettered_at: Optional[str] = None


class DownloadCountResponse(BaseModel):
    count: int
    app_version_id: Optional[str] = None


class DownloadStatsResponse(BaseModel):
    total: int
    by_version: Dict[str, int] = Field(default_factory=dict)
    platforms: Dict[str, int] = Field(default_factory=dict)
    recent: List[Dict[str, Any]] = Field(default_factory=list)
    local_count: int = 0
