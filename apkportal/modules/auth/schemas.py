from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Literal


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    full_name: Optional[str] = None


class SignInRequest(BaseModel):
    email: EmailStr
    password: str
    remember: bool = False


class UserData(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    created_at: Optional[str] = None
    offline: bool = False


class AuthResponse(BaseModel):
    user: Optional[UserData] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    offline: bool = False
    message: str


class OAuthUrlResponse(BaseModel):
    provider: str
    url: str


class OAuthProviderRequest(BaseModel):
    provider: Literal["google", "github"]


class CodeExchangeRequest(BaseModel):
    code: str


class RememberedEmailResponse(BaseModel):
    email: Optional[str] = None


class SetAdminRequest(BaseModel):
    user_id: str
    is_admin: bool = True
