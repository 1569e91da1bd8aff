from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class ActivityCreate(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=64)
    activity_data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActivityResponse(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    activity_type: str
    activity_data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
