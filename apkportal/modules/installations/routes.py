from fastapi import APIRouter, Depends
from apkportal.core.dependencies import (
    get_installation_service, get_current_user_id, check_self_or_admin,
    require_admin, get_supabase,
)
from apkportal.modules.installations.schemas import (
    InstallationCreate, InstallationResponse, InstallationStatsResponse,
)
from apkportal.modules.installations.service import InstallationService
from supabase import Client
from typing import List, Dict

router = APIRouter(prefix="/installations", tags=["installations"])


@router.post("", response_model=InstallationResponse, status_code=201)
async def record_installation(
    installation_data: InstallationCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: InstallationService = Depends(get_installation_service),
):
    """Report an install, update or uninstall from a device"""
    return service.record_installation(installation_data, user=user_data)


@router.get("/stats", response_model=InstallationStatsResponse)
async def get_installation_stats(
    user_data: Dict = Depends(require_admin),
    service: InstallationService = Depends(get_installation_service),
):
    return service.get_installation_stats()


@router.get("/users/{user_id}", response_model=List[InstallationResponse])
async def get_user_installations(
    user_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: InstallationService = Depends(get_installation_service),
    supabase: Client = Depends(get_supabase),
):
    check_self_or_admin(user_id, user_data, supabase)
    return service.get_user_installations(user_id)
