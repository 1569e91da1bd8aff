"""
Core dependencies for route protection and service wiring
"""

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from apkportal.core.background import BackgroundRunner, get_background_runner
from apkportal.database.local_store import LocalStore, get_local_store
from apkportal.database.supabase_client import get_supabase, get_service_supabase
from apkportal.modules.activities.service import ActivityService
from apkportal.modules.auth.service import AuthService
from apkportal.modules.contact.service import ContactService
from apkportal.modules.downloads.outbox import DownloadOutbox, get_download_outbox
from apkportal.modules.downloads.service import DownloadService
from apkportal.modules.installations.service import InstallationService
from apkportal.modules.users.service import UserService
from apkportal.modules.versions.service import ApkService
from supabase import Client
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def get_store() -> LocalStore:
    return get_local_store()


def get_outbox() -> DownloadOutbox:
    return get_download_outbox()


def get_runner() -> BackgroundRunner:
    return get_background_runner()


def get_user_service(supabase: Client = Depends(get_supabase)) -> UserService:
    return UserService(supabase)


def get_activity_service(
    supabase: Client = Depends(get_supabase),
    runner: BackgroundRunner = Depends(get_runner),
) -> ActivityService:
    return ActivityService(supabase, runner)


def get_auth_service(
    supabase: Client = Depends(get_supabase),
    store: LocalStore = Depends(get_store),
    activities: ActivityService = Depends(get_activity_service),
) -> AuthService:
    return AuthService(supabase, store, UserService(supabase), activities)


def get_download_service(
    supabase: Client = Depends(get_supabase),
    outbox: DownloadOutbox = Depends(get_outbox),
    activities: ActivityService = Depends(get_activity_service),
) -> DownloadService:
    return DownloadService(supabase, outbox, activities)


def get_installation_service(
    supabase: Client = Depends(get_supabase),
    downloads: DownloadService = Depends(get_download_service),
) -> InstallationService:
    return InstallationService(supabase, downloads)


def get_apk_service(supabase: Client = Depends(get_supabase)) -> ApkService:
    return ApkService(supabase)


def get_admin_apk_service(supabase: Client = Depends(get_service_supabase)) -> ApkService:
    """Bucket management and private-object URLs need the service role key"""
    return ApkService(supabase)


def get_contact_service(supabase: Client = Depends(get_service_supabase)) -> ContactService:
    # Reading messages is admin-only under RLS
    return ContactService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.verify_token(token)
    return user_data


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service)
) -> Optional[dict]:
    """Like get_current_user_id, but anonymous requests get None instead of 403"""
    if credentials is None:
        return None
    return auth_service.verify_token(credentials.credentials)


def is_admin(user_data: Dict[str, Any], supabase: Client) -> bool:
    """Admin if app_metadata marks a super user or the user is listed in the admins table"""
    app_metadata = user_data.get("app_metadata") or {}
    if app_metadata.get("type") == "super_user":
        return True
    try:
        result = supabase.table("admins")\
            .select("user_id")\
            .eq("user_id", user_data["id"])\
            .limit(1)\
            .execute()
        return bool(result.data)
    except Exception as e:
        logger.error(f"Error checking admin status: {e}")
        return False


def require_admin(
    user_data: dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
) -> dict:
    """Dependency for admin-only routes"""
    if not is_admin(user_data, supabase):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user_data


def check_self_or_admin(user_id: str, user_data: dict, supabase: Client) -> dict:
    """Allow access to a user's own records, or to any record for admins"""
    if user_data["id"] == user_id or is_admin(user_data, supabase):
        return user_data
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You can only access your own records"
    )
