from fastapi import APIRouter, Depends
from apkportal.core.dependencies import (
    get_user_service, get_current_user_id, get_download_service,
    check_self_or_admin, require_admin, get_supabase,
)
from apkportal.modules.downloads.service import DownloadService
from apkportal.modules.users.schemas import (
    ProfileUpsert, ProfileResponse, DeviceInfo, PreferencesUpdate,
    OnlineStatusUpdate, OnlineCountResponse,
)
from apkportal.modules.users.service import UserService
from supabase import Client
from typing import List, Dict, Optional
from datetime import datetime

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[ProfileResponse])
async def list_profiles(
    limit: int = 10,
    offset: int = 0,
    active_since: Optional[datetime] = None,
    user_data: Dict = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    """List profiles (admin only)"""
    return service.list_profiles(limit=limit, offset=offset, active_since=active_since)


@router.get("/online-count", response_model=OnlineCountResponse)
async def get_online_count(service: UserService = Depends(get_user_service)):
    return OnlineCountResponse(count=service.get_online_count())


@router.get("/{user_id}", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: UserService = Depends(get_user_service),
    supabase: Client = Depends(get_supabase)
):
    """Get a profile (own profile, or any for admins)"""
    check_self_or_admin(user_id, user_data, supabase)
    return service.get_profile(user_id)


@router.put("/{user_id}", response_model=ProfileResponse)
async def upsert_profile(
    user_id: str,
    profile_data: ProfileUpsert,
    user_data: Dict = Depends(get_current_user_id),
    service: UserService = Depends(get_user_service),
    supabase: Client = Depends(get_supabase)
):
    """Create or update a profile"""
    check_self_or_admin(user_id, user_data, supabase)
    return service.upsert_profile(user_id, profile_data)


@router.put("/{user_id}/device", response_model=ProfileResponse)
async def update_device(
    user_id: str,
    device: DeviceInfo,
    user_data: Dict = Depends(get_current_user_id),
    service: UserService = Depends(get_user_service),
    supabase: Client = Depends(get_supabase)
):
    check_self_or_admin(user_id, user_data, supabase)
    return service.update_device(user_id, device)


@router.patch("/{user_id}/preferences", response_model=ProfileResponse)
async def update_preferences(
    user_id: str,
    body: PreferencesUpdate,
    user_data: Dict = Depends(get_current_user_id),
    service: UserService = Depends(get_user_service),
    supabase: Client = Depends(get_supabase)
):
    """Merge preference keys into the stored preferences"""
    check_self_or_admin(user_id, user_data, supabase)
    return service.update_preferences(user_id, body.preferences)


@router.put("/{user_id}/online", status_code=200)
async def set_online_status(
    user_id: str,
    body: OnlineStatusUpdate,
    user_data: Dict = Depends(get_current_user_id),
    service: UserService = Depends(get_user_service),
    supabase: Client = Depends(get_supabase)
):
    check_self_or_admin(user_id, user_data, supabase)
    service.set_online_status(user_id, body.is_online)
    return {"success": True, "user_id": user_id, "is_online": body.is_online}


@router.get("/{user_id}/downloads", response_model=List[dict])
async def get_user_downloads(
    user_id: str,
    user_data: Dict = Depends(get_current_user_id),
    downloads: DownloadService = Depends(get_download_service),
    supabase: Client = Depends(get_supabase)
):
    """Download history of a user"""
    check_self_or_admin(user_id, user_data, supabase)
    return downloads.get_user_downloads(user_id)
