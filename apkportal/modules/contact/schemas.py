from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Literal
from datetime import datetime

MessageStatus = Literal["new", "read", "replied", "archived"]


class ContactMessageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    subject: Optional[str] = Field(None, max_length=300)
    message: str = Field(..., min_length=1, max_length=5000)


class ContactMessageResponse(BaseModel):
    id: str
    name: str
    email: str
    subject: Optional[str] = None
    message: str
    user_id: Optional[str] = None
    status: str = "new"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContactStatusUpdate(BaseModel):
    status: MessageStatus
