from pydantic import BaseModel, Field, field_validator
from typing import Optional, Any
from datetime import datetime


class ApkFileResponse(BaseModel):
    id: str
    file_name: str
    version_name: str
    version_code: int
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    storage_path: str
    public_url: Optional[str] = None
    changelog: Optional[str] = None
    is_active: bool = True
    checksum: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VersionResponse(BaseModel):
    id: str
    version_name: str
    version_code: int
    release_date: Optional[datetime] = None
    is_public: bool = True
    is_required: bool = False
    is_latest: bool = False
    apk_file_id: Optional[str] = None
    apk_file: Optional[ApkFileResponse] = None
    changelog: Optional[str] = None
    download_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("download_count", mode="before")
    @classmethod
    def flatten_count(cls, value: Any) -> int:
        # PostgREST returns embedded aggregates as [{"count": n}]
        if isinstance(value, list):
            return sum(int((item or {}).get("count") or 0) for item in value)
        if isinstance(value, dict):
            return int(value.get("count") or 0)
        return int(value or 0)

    @field_validator("is_latest", "is_public", "is_required", mode="before")
    @classmethod
    def null_is_false(cls, value: Any) -> bool:
        return bool(value)

    class Config:
        from_attributes = True


class VersionCreate(BaseModel):
    version_name: str = Field(..., min_length=1)
    version_code: int = Field(..., ge=1)
    changelog: Optional[str] = None
    is_public: bool = True
    is_required: bool = False


class VersionUpdate(BaseModel):
    version_name: Optional[str] = None
    changelog: Optional[str] = None
    is_public: Optional[bool] = None
    is_required: Optional[bool] = None
    release_date: Optional[datetime] = None


class ApkFileUpdate(BaseModel):
    file_name: Optional[str] = None
    changelog: Optional[str] = None
    is_active: Optional[bool] = None
    checksum: Optional[str] = None


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: Optional[int] = None
    version_id: Optional[str] = None


class SignedUrlRequest(BaseModel):
    path: str
    expires_in: int = Field(3600, ge=1, le=7 * 24 * 3600)


class BucketStatusResponse(BaseModel):
    success: bool
    bucket: str
    created: bool = False
    error: Optional[str] = None
