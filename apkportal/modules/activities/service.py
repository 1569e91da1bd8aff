from supabase import Client
from apkportal.core.background import BackgroundRunner, get_background_runner
from apkportal.core.errors import is_missing_function, is_missing_relation
from apkportal.modules.activities.schemas import ActivityResponse
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from fastapi import HTTPException
import logging
import uuid

logger = logging.getLogger(__name__)


def is_local_user_id(user_id: Optional[str]) -> bool:
    """Ids issued while offline never exist in remote tables."""
    return not user_id or user_id.startswith("local-")


class ActivityService:
    def __init__(self, supabase: Client, runner: Optional[BackgroundRunner] = None):
        self.supabase = supabase
        self.runner = runner or get_background_runner()

    def track_activity(
        self,
        user_id: str,
        activity_type: str,
        activity_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> ActivityResponse:
        """
        Append an activity row and touch the profile's last_active.

        The row is keyed on client_event_id, so calling again with the same
        event_id after a lost response does not log the activity twice.
        """
        try:
            result = self.supabase.table("user_activities")\
                .upsert({
                    "user_id": user_id,
                    "activity_type": activity_type,
                    "activity_data": activity_data or {},
                    "metadata": metadata or {},
                    "client_event_id": event_id or str(uuid.uuid4()),
                }, on_conflict="client_event_id", ignore_duplicates=True)\
                .execute()
        except Exception as e:
            logger.error(f"Error tracking activity '{activity_type}' for {user_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to track activity: {str(e)}")

        self.touch_last_active(user_id)

        if result.data:
            return ActivityResponse(**result.data[0])
        return ActivityResponse(user_id=user_id, activity_type=activity_type,
                                activity_data=activity_data or {}, metadata=metadata or {})

    def touch_last_active(self, user_id: str) -> None:
        try:
            self.supabase.table("profiles")\
                .update({"last_active": datetime.now(timezone.utc).isoformat()})\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.warning(f"Could not update last_active for {user_id}: {e}")

    def track_activity_background(
        self,
        user_id: Optional[str],
        activity_type: str,
        activity_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Fire-and-forget variant used by auth and download flows. Retries reuse one event id."""
        if is_local_user_id(user_id):
            return
        self.runner.submit(
            self.track_activity,
            user_id,
            activity_type,
            activity_data,
            metadata,
            str(uuid.uuid4()),
            description=f"activity:{activity_type}",
        )

    def get_activities(self, user_id: str, limit: int = 10) -> List[ActivityResponse]:
        """Recent activities, degrading gracefully on partially migrated schemas"""
        try:
            self.supabase.table("user_activities").select("id").limit(1).execute()
        except Exception as e:
            if is_missing_relation(e):
                logger.warning("user_activities table doesn't exist yet")
                return []
            raise HTTPException(status_code=500, detail=str(e))

        try:
            result = self.supabase.rpc(
                "get_recent_user_activities",
                {"user_id": user_id, "limit_count": limit},
            ).execute()
            rows = result.data or []
        except Exception as e:
            if not is_missing_function(e):
                raise HTTPException(status_code=500, detail=str(e))
            try:
                result = self.supabase.table("user_activities")\
                    .select("id, user_id, activity_type, activity_data, metadata, created_at")\
                    .eq("user_id", user_id)\
                    .order("created_at", desc=True)\
                    .limit(limit)\
                    .execute()
                rows = result.data or []
            except Exception as inner:
                raise HTTPException(status_code=500, detail=str(inner))

        return [ActivityResponse(**row) for row in rows]
