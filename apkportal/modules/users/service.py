from supabase import Client
from apkportal.core.errors import error_message
from apkportal.modules.users.schemas import (
    ProfileUpsert, ProfileResponse, DeviceInfo
)
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def upsert_profile(self, user_id: str, profile_data: ProfileUpsert) -> ProfileResponse:
        """Create or update a profile in one statement (no read-then-write race)"""
        now = _now()
        payload: Dict[str, Any] = {"id": user_id, "updated_at": now, "last_active": now}
        payload.update(profile_data.model_dump(exclude_none=True))
        try:
            result = self.supabase.table("profiles")\
                .upsert(payload, on_conflict="id")\
                .execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to save profile")

            return ProfileResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error upserting profile {user_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def ensure_profile(self, user_id: str, email: Optional[str], full_name: Optional[str] = None) -> bool:
        """Insert the profile only if absent. Best-effort: returns False instead of raising."""
        row: Dict[str, Any] = {"id": user_id, "email": email}
        if full_name:
            row["full_name"] = full_name
        try:
            self.supabase.table("profiles")\
                .upsert(row, on_conflict="id", ignore_duplicates=True)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Error ensuring profile exists for {user_id}: {e}")
            return False

    def get_profile(self, user_id: str) -> ProfileResponse:
        """Get profile by user ID"""
        try:
            result = self.supabase.table("profiles")\
                .select("*")\
                .eq("id", user_id)\
                .limit(1)\
                .execute()

            if not result.data:
                raise HTTPException(status_code=404, detail="Profile not found")

            return ProfileResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_profiles(
        self,
        limit: int = 10,
        offset: int = 0,
        active_since: Optional[datetime] = None
    ) -> List[ProfileResponse]:
        """List profiles, optionally only those active since a timestamp"""
        try:
            query = self.supabase.table("profiles").select("*")
            if active_since:
                query = query.gte("last_active", active_since.isoformat())
            result = query.order("last_active", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [ProfileResponse(**p) for p in result.data or []]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def update_device(self, user_id: str, device: DeviceInfo) -> ProfileResponse:
        """Record the user's current device on the profile and in the devices table"""
        now = _now()
        device_info = device.model_dump(mode="json", exclude_none=True)
        try:
            result = self.supabase.table("profiles")\
                .update({"device_info": device_info, "last_active": now})\
                .eq("id", user_id)\
                .execute()

            if not result.data:
                raise HTTPException(status_code=404, detail="Profile not found")

            self.supabase.table("devices").upsert(
                {
                    "user_id": user_id,
                    "device_id": device.device_id,
                    "model": device.model,
                    "os_version": device.os_version,
                    "app_version": device.app_version,
                    "installation_id": device.installation_id,
                    "last_connected": now,
                },
                on_conflict="user_id,device_id",
            ).execute()

            return ProfileResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error updating device for {user_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def update_preferences(self, user_id: str, preferences: Dict[str, Any]) -> ProfileResponse:
        """Merge new preference keys over the stored ones"""
        current = self.get_profile(user_id)
        merged = {**(current.preferences or {}), **preferences}
        try:
            result = self.supabase.table("profiles")\
                .update({"preferences": merged, "updated_at": _now()})\
                .eq("id", user_id)\
                .execute()

            if not result.data:
                raise HTTPException(status_code=404, detail="Profile not found")

            return ProfileResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def set_online_status(self, user_id: str, is_online: bool) -> bool:
        """Upsert the online flag and mirror it onto the profile"""
        try:
            self.supabase.table("online_status").select("user_id").limit(1).execute()
        except Exception as e:
            # Older deployments lack the table; the RPC creates it server-side
            logger.warning(f"online_status check failed ({error_message(e)}), calling ensure_online_status_table")
            try:
                self.supabase.rpc("ensure_online_status_table", {}).execute()
            except Exception as rpc_error:
                logger.error(f"ensure_online_status_table failed: {rpc_error}")

        now = _now()
        try:
            self.supabase.table("online_status").upsert(
                {"user_id": user_id, "is_online": is_online, "last_updated": now},
                on_conflict="user_id",
            ).execute()

            self.supabase.table("profiles")\
                .update({"is_online": is_online, "last_active": now})\
                .eq("id", user_id)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Error updating online status for {user_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_online_count(self) -> int:
        try:
            result = self.supabase.table("online_status")\
                .select("user_id", count="exact")\
                .eq("is_online", True)\
                .execute()
            if result.count is not None:
                return result.count
            return len(result.data or [])
        except Exception as e:
            logger.error(f"Error getting online users count: {e}")
            return 0
