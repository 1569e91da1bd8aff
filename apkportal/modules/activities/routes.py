from fastapi import APIRouter, Depends
from apkportal.core.dependencies import (
    get_activity_service, get_current_user_id, check_self_or_admin, get_supabase,
)
from apkportal.modules.activities.schemas import ActivityCreate, ActivityResponse
from apkportal.modules.activities.service import ActivityService
from supabase import Client
from typing import List, Dict

router = APIRouter(prefix="/activities", tags=["activities"])


@router.post("", response_model=ActivityResponse, status_code=201)
async def track_activity(
    activity: ActivityCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: ActivityService = Depends(get_activity_service),
):
    """Record an activity for the authenticated user"""
    return service.track_activity(
        user_data["id"],
        activity.activity_type,
        activity.activity_data,
        activity.metadata,
    )


@router.get("/{user_id}", response_model=List[ActivityResponse])
async def get_activities(
    user_id: str,
    limit: int = 10,
    user_data: Dict = Depends(get_current_user_id),
    service: ActivityService = Depends(get_activity_service),
    supabase: Client = Depends(get_supabase),
):
    """Recent activities of a user (own, or any for admins)"""
    check_self_or_admin(user_id, user_data, supabase)
    return service.get_activities(user_id, limit=limit)
