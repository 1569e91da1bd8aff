from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials
from apkportal.core.dependencies import (
    get_auth_service, get_current_user_id, optional_security, require_admin,
    is_admin, get_supabase,
)
from apkportal.modules.auth.schemas import (
    SignUpRequest, SignInRequest, AuthResponse, UserData, OAuthUrlResponse,
    OAuthProviderRequest, CodeExchangeRequest, RememberedEmailResponse, SetAdminRequest,
)
from apkportal.modules.auth.service import AuthService
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=AuthResponse, status_code=201)
async def sign_up(
    signup_data: SignUpRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Register a new user (falls back to a local account when Supabase is unreachable)"""
    return service.sign_up(signup_data)


@router.post("/login", response_model=AuthResponse)
async def sign_in(
    login_data: SignInRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Login and get access token"""
    return service.sign_in(login_data)


@router.post("/logout", status_code=200)
async def sign_out(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    service: AuthService = Depends(get_auth_service)
):
    """Logout the session behind the bearer token; its cached entry is always cleared"""
    service.sign_out(credentials.credentials if credentials else None)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me", response_model=UserData)
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    service: AuthService = Depends(get_auth_service)
):
    """Current user from the bearer token (Supabase or offline session)"""
    user = service.get_current_user(credentials.credentials if credentials else None)
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user


@router.post("/oauth", response_model=OAuthUrlResponse)
async def oauth_sign_in(
    request: OAuthProviderRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Get the provider URL to redirect the browser to"""
    return service.oauth_url(request.provider)


@router.post("/callback", response_model=AuthResponse)
async def oauth_callback(
    request: CodeExchangeRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Exchange the code from /auth/callback for a session"""
    return service.exchange_code(request.code)


@router.get("/remembered-email", response_model=RememberedEmailResponse)
async def get_remembered_email(service: AuthService = Depends(get_auth_service)):
    return RememberedEmailResponse(email=service.get_remembered_email())


@router.delete("/remembered-email", status_code=204)
async def forget_remembered_email(service: AuthService = Depends(get_auth_service)):
    service.forget_remembered_email()
    return None


@router.get("/is-admin")
async def check_admin(
    current_user: Dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase),
):
    return {"user_id": current_user["id"], "is_admin": is_admin(current_user, supabase)}


@router.post("/set-admin", status_code=200)
async def set_admin(
    request: SetAdminRequest,
    current_user: Dict = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Grant or revoke admin status (requires current user to be an admin)"""
    service.set_admin(request.user_id, request.is_admin)
    return {
        "message": f"User {request.user_id} admin status set to {request.is_admin}",
        "user_id": request.user_id,
        "is_admin": request.is_admin
    }
