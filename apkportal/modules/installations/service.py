from supabase import Client
from apkportal.core.errors import error_message, is_missing_function, is_permanent_error
from apkportal.modules.activities.service import is_local_user_id
from apkportal.modules.downloads.schemas import DownloadCreate
from apkportal.modules.downloads.service import DownloadService
from apkportal.modules.installations.schemas import (
    InstallationCreate, InstallationResponse, InstallationStatsResponse,
)
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


class InstallationService:
    def __init__(self, supabase: Client, downloads: DownloadService):
        self.supabase = supabase
        self.downloads = downloads

    def record_installation(
        self,
        installation_data: InstallationCreate,
        user: Optional[Dict[str, Any]] = None,
    ) -> InstallationResponse:
        """Store an installation event; a fresh install also counts as a download"""
        user_id = (user or {}).get("id")
        installation_date = installation_data.installation_date or datetime.now(timezone.utc)
        record = {
            "user_id": None if is_local_user_id(user_id) else user_id,
            "app_version_id": str(installation_data.app_version_id),
            "device_id": installation_data.device_id,
            "status": installation_data.status,
            "installation_date": installation_date.isoformat(),
            "device_info": installation_data.device_info,
            "metadata": installation_data.metadata,
        }
        try:
            result = self.supabase.table("installations").insert(record).execute()
            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to record installation")
            installation = result.data[0]
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error recording installation: {e}")
            if is_permanent_error(e):
                raise HTTPException(status_code=422, detail=f"Installation rejected: {error_message(e)}")
            raise HTTPException(status_code=500, detail=str(e))

        if installation_data.status == "installed":
            # Unreachable backends are queued; a rejected version id already failed the insert above
            self.downloads.record_download(
                DownloadCreate(
                    app_version_id=installation_data.app_version_id,
                    device_info=installation_data.device_info,
                    metadata={"source": "installation", "device_id": installation_data.device_id},
                ),
                user=user,
            )
        return InstallationResponse(**installation)

    def get_user_installations(self, user_id: str) -> List[InstallationResponse]:
        try:
            result = self.supabase.table("installations")\
                .select("*, app_version:app_versions(*)")\
                .eq("user_id", user_id)\
                .order("installation_date", desc=True)\
                .execute()
            return [InstallationResponse(**row) for row in result.data or []]
        except Exception as e:
            logger.error(f"Error fetching user installations: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def _count(self, statuses: List[str]) -> int:
        result = self.supabase.table("installations")\
            .select("id", count="exact")\
            .in_("status", statuses)\
            .execute()
        return result.count if result.count is not None else len(result.data or [])

    def get_installation_stats(self) -> InstallationStatsResponse:
        try:
            total = self._count(["installed"])
            active = self._count(["installed", "updated"])
        except Exception as e:
            logger.error(f"Error fetching installation stats: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        by_version: Dict[str, int] = {}
        try:
            result = self.supabase.rpc("get_installations_by_version", {}).execute()
            for item in result.data or []:
                by_version[str(item.get("version_name"))] = int(item.get("count") or 0)
        except Exception as e:
            if not is_missing_function(e):
                logger.error(f"Error fetching installations by version: {e}")
                raise HTTPException(status_code=500, detail=str(e))
            logger.warning("get_installations_by_version is not installed, skipping breakdown")

        return InstallationStatsResponse(total=total, active=active, by_version=by_version)
