from fastapi import APIRouter, Depends, Request
from apkportal.core.dependencies import get_download_service, get_optional_user, require_admin
from apkportal.modules.downloads.schemas import (
    DownloadCreate, DownloadRecordResponse, SyncResponse, OutboxEntryResponse,
    DownloadCountResponse, DownloadStatsResponse,
)
from apkportal.modules.downloads.service import DownloadService
from typing import List, Dict, Optional

router = APIRouter(prefix="/downloads", tags=["downloads"])


@router.post("", response_model=DownloadRecordResponse, status_code=201)
async def record_download(
    download_data: DownloadCreate,
    request: Request,
    user: Optional[Dict] = Depends(get_optional_user),
    service: DownloadService = Depends(get_download_service),
):
    """Record a download; anonymous downloads are allowed"""
    return service.record_download(
        download_data,
        user=user,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_downloads(
    force: bool = False,
    user_data: Dict = Depends(require_admin),
    service: DownloadService = Depends(get_download_service),
):
    """Push locally queued downloads to Supabase"""
    return service.sync(force=force)


@router.get("/pending", response_model=List[OutboxEntryResponse])
async def list_pending(
    user_data: Dict = Depends(require_admin),
    service: DownloadService = Depends(get_download_service),
):
    return service.pending()


@router.get("/dead-letter", response_model=List[OutboxEntryResponse])
async def list_dead_letters(
    user_data: Dict = Depends(require_admin),
    service: DownloadService = Depends(get_download_service),
):
    """Queued downloads the backend rejected; they are kept for inspection and never retried"""
    return service.dead_letters()


@router.get("/count", response_model=DownloadCountResponse)
async def get_total_downloads(service: DownloadService = Depends(get_download_service)):
    return DownloadCountResponse(count=service.get_total_downloads())


@router.get("/versions/{version_id}/count", response_model=DownloadCountResponse)
async def get_version_downloads(
    version_id: str,
    service: DownloadService = Depends(get_download_service),
):
    return DownloadCountResponse(count=service.get_version_downloads(version_id), app_version_id=version_id)


@router.get("/stats", response_model=DownloadStatsResponse)
async def get_download_stats(
    user_data: Dict = Depends(require_admin),
    service: DownloadService = Depends(get_download_service),
):
    """Download totals, per-version and per-platform breakdown (admin only)"""
    return service.get_download_stats()
