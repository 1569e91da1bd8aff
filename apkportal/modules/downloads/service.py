from supabase import Client
from apkportal.core.errors import error_message, is_missing_function, is_permanent_error
from apkportal.modules.activities.service import ActivityService, is_local_user_id
from apkportal.modules.downloads.outbox import DownloadOutbox, FlushResult
from apkportal.modules.downloads.schemas import (
    DownloadCreate, DownloadRecordResponse, DownloadStatsResponse, SyncResponse,
)
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from fastapi import HTTPException
import uuid
import logging

logger = logging.getLogger(__name__)


def detect_browser(user_agent: str) -> str:
    # Order matters: Chrome UAs also contain "Safari", Edge UAs contain "Chrome"
    if "Firefox" in user_agent:
        return "Firefox"
    if "Edg" in user_agent:
        return "Edge"
    if "Chrome" in user_agent:
        return "Chrome"
    if "Safari" in user_agent:
        return "Safari"
    if "MSIE" in user_agent or "Trident/" in user_agent:
        return "Internet Explorer"
    return "Unknown"


def detect_os(user_agent: str) -> str:
    if "Android" in user_agent:
        return "Android"
    if "iPhone" in user_agent or "iPad" in user_agent:
        return "iOS"
    if "Windows" in user_agent:
        return "Windows"
    if "Mac" in user_agent:
        return "MacOS"
    if "Linux" in user_agent:
        return "Linux"
    return "Unknown"


def detect_device(user_agent: str) -> str:
    if "Tablet" in user_agent or "iPad" in user_agent:
        return "Tablet"
    if "Mobi" in user_agent:
        return "Mobile"
    return "Desktop"


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, str]:
    user_agent = user_agent or ""
    return {
        "userAgent": user_agent,
        "browser": detect_browser(user_agent),
        "os": detect_os(user_agent),
        "device": detect_device(user_agent),
    }


class DownloadService:
    def __init__(self, supabase: Client, outbox: DownloadOutbox, activities: Optional[ActivityService] = None):
        self.supabase = supabase
        self.outbox = outbox
        self.activities = activities or ActivityService(supabase)

    def build_row(
        self,
        download_data: DownloadCreate,
        user: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        user_id = (user or {}).get("id")
        email = download_data.email or (user or {}).get("email")
        app_version_id = download_data.app_version_id
        return {
            "app_version_id": str(app_version_id) if app_version_id else None,
            "app_version": download_data.app_version,
            "user_id": None if is_local_user_id(user_id) else user_id,
            "email": email,
            "user_agent": user_agent,
            "platform": download_data.platform,
            "device_info": download_data.device_info or parse_user_agent(user_agent),
            "ip_address": ip_address or "anonymous",
            "metadata": download_data.metadata or {},
            "download_date": datetime.now(timezone.utc).isoformat(),
        }

    def _write(self, table: str, row: Dict[str, Any], idempotency_key: str) -> None:
        """Idempotent insert keyed on client_event_id"""
        payload = dict(row)
        payload["client_event_id"] = idempotency_key
        self.supabase.table(table)\
            .upsert(payload, on_conflict="client_event_id", ignore_duplicates=True)\
            .execute()

    def _send_entry(self, entry: Dict[str, Any]) -> None:
        self._write(entry["table"], entry["payload"], entry["idempotency_key"])

    def record_download(
        self,
        download_data: DownloadCreate,
        user: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> DownloadRecordResponse:
        """
        Record a download remotely, queueing it locally if the write fails.

        A row the backend rejects outright (unknown version, bad column value)
        is a 422 and is never queued.
        """
        row = self.build_row(download_data, user, user_agent, ip_address)
        idempotency_key = str(uuid.uuid4())
        try:
            self._write("downloads", row, idempotency_key)
            response = DownloadRecordResponse(synced=True, id=idempotency_key, message="Download recorded")
        except Exception as e:
            if is_permanent_error(e):
                logger.error(f"Download rejected by Supabase, not queueing: {error_message(e)}")
                raise HTTPException(status_code=422, detail=f"Download rejected: {error_message(e)}")
            logger.warning(f"Error recording download remotely, queueing locally: {e}")
            entry = self.outbox.append(row, table="downloads", idempotency_key=idempotency_key)
            response = DownloadRecordResponse(
                synced=False,
                id=entry["local_id"],
                message="Download saved locally and will be synced later",
            )

        user_id = (user or {}).get("id")
        if not is_local_user_id(user_id):
            self.activities.track_activity_background(
                user_id,
                "download",
                {
                    "app_version_id": row["app_version_id"],
                    "app_version": download_data.app_version,
                    "timestamp": row["download_date"],
                },
            )
        return response

    def sync(self, force: bool = False) -> SyncResponse:
        """Push queued downloads; entries stay queued until their own write succeeds"""
        result: FlushResult = self.outbox.flush(self._send_entry, force=force)
        return SyncResponse(
            synced=result.synced,
            failed=result.failed,
            deferred=result.deferred,
            remaining=result.remaining,
            dead_lettered=result.dead_lettered,
            in_progress=result.in_progress,
        )

    def pending(self) -> List[Dict[str, Any]]:
        return self.outbox.entries()

    def dead_letters(self) -> List[Dict[str, Any]]:
        return self.outbox.dead_letters()

    def get_total_downloads(self) -> int:
        try:
            result = self.supabase.rpc("get_total_downloads", {}).execute()
            return int(result.data or 0)
        except Exception as e:
            if not is_missing_function(e):
                logger.error(f"Error getting download count: {e}")
                raise HTTPException(status_code=500, detail=str(e))
        try:
            result = self.supabase.table("downloads").select("id", count="exact").execute()
            return result.count if result.count is not None else len(result.data or [])
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_version_downloads(self, version_id: str) -> int:
        try:
            result = self.supabase.rpc("get_download_count", {"version_id": version_id}).execute()
            rows = result.data or []
            if isinstance(rows, list):
                return sum(int(r.get("count") or 0) for r in rows)
            return int(rows)
        except Exception as e:
            if not is_missing_function(e):
                logger.error(f"Error getting version download count: {e}")
                raise HTTPException(status_code=500, detail=str(e))
        try:
            result = self.supabase.table("downloads")\
                .select("id", count="exact")\
                .eq("app_version_id", version_id)\
                .execute()
            return result.count if result.count is not None else len(result.data or [])
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_download_stats(self) -> DownloadStatsResponse:
        """Totals per version and platform, including events still waiting in the outbox"""
        by_version: Dict[str, int] = {}
        total = 0
        try:
            result = self.supabase.rpc("get_download_count", {}).execute()
            for item in result.data or []:
                count = int(item.get("count") or 0)
                by_version[str(item.get("version_id"))] = count
                total += count
        except Exception as e:
            logger.warning(f"get_download_count RPC unavailable ({e}), counting rows directly")
            try:
                result = self.supabase.table("downloads").select("app_version_id", count="exact").execute()
                for item in result.data or []:
                    version_id = str(item.get("app_version_id"))
                    by_version[version_id] = by_version.get(version_id, 0) + 1
                # data is capped at the PostgREST max-rows limit, the count is not
                total = result.count if result.count is not None else len(result.data or [])
            except Exception as inner:
                logger.error(f"Error with fallback download stats query: {inner}")

        platforms: Dict[str, int] = {}
        recent: List[Dict[str, Any]] = []
        try:
            result = self.supabase.table("downloads").select("platform").execute()
            for item in result.data or []:
                platform = item.get("platform") or "Unknown"
                platforms[platform] = platforms.get(platform, 0) + 1
            recent_result = self.supabase.table("downloads")\
                .select("*")\
                .order("download_date", desc=True)\
                .limit(10)\
                .execute()
            recent = recent_result.data or []
        except Exception as e:
            logger.error(f"Error fetching download breakdown: {e}")

        local_entries = self.outbox.entries()
        for entry in local_entries:
            payload = entry.get("payload") or {}
            version_id = str(payload.get("app_version_id") or payload.get("app_version"))
            by_version[version_id] = by_version.get(version_id, 0) + 1
            total += 1

        return DownloadStatsResponse(
            total=total,
            by_version=by_version,
            platforms=platforms,
            recent=recent,
            local_count=len(local_entries),
        )

    def get_user_downloads(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table("downloads")\
                .select("*, app_version:app_versions(id, version_name, version_code)")\
                .eq("user_id", user_id)\
                .order("download_date", desc=True)\
                .execute()
            return result.data or []
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
