from fastapi import APIRouter, Depends, UploadFile, File, Form
from apkportal.core.dependencies import (
    get_apk_service, get_admin_apk_service, get_optional_user, require_admin, is_admin, get_supabase,
)
from apkportal.modules.versions.schemas import (
    VersionCreate, VersionUpdate, VersionResponse, ApkFileUpdate, ApkFileResponse,
    DownloadUrlResponse, SignedUrlRequest, BucketStatusResponse,
)
from apkportal.modules.versions.service import ApkService
from supabase import Client
from typing import List, Dict, Optional

router = APIRouter(prefix="/versions", tags=["versions"])


@router.get("", response_model=List[VersionResponse])
async def list_versions(
    include_private: bool = False,
    limit: int = 10,
    offset: int = 0,
    user: Optional[Dict] = Depends(get_optional_user),
    service: ApkService = Depends(get_apk_service),
    supabase: Client = Depends(get_supabase),
):
    """Published versions, newest first. Private versions are only listed for admins."""
    if include_private and not (user and is_admin(user, supabase)):
        include_private = False
    return service.list_versions(include_private=include_private, limit=limit, offset=offset)


@router.get("/latest", response_model=VersionResponse)
async def get_latest_version(service: ApkService = Depends(get_apk_service)):
    return service.get_latest_version()


@router.post("/upload", response_model=VersionResponse, status_code=201)
async def upload_apk(
    file: UploadFile = File(...),
    version_name: str = Form(...),
    version_code: int = Form(...),
    changelog: Optional[str] = Form(None),
    is_public: bool = Form(True),
    is_required: bool = Form(False),
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    """
    Upload an APK and create the matching version.
    The file is stored under <version_name>/<version_code>/<file_name>.
    """
    version_data = VersionCreate(
        version_name=version_name,
        version_code=version_code,
        changelog=changelog,
        is_public=is_public,
        is_required=is_required,
    )
    return await service.upload_apk(file, version_data)


@router.post("/bucket", response_model=BucketStatusResponse)
async def ensure_bucket(
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    return service.ensure_bucket()


@router.post("/signed-url", response_model=DownloadUrlResponse)
async def create_signed_url(
    request: SignedUrlRequest,
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    return service.create_signed_url(request.path, request.expires_in)


@router.put("/files/{file_id}", response_model=ApkFileResponse)
async def update_apk_file(
    file_id: str,
    file_data: ApkFileUpdate,
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    return service.update_apk_file(file_id, file_data)


@router.get("/{version_id}", response_model=VersionResponse)
async def get_version(
    version_id: str,
    user: Optional[Dict] = Depends(get_optional_user),
    service: ApkService = Depends(get_apk_service),
    supabase: Client = Depends(get_supabase),
):
    """Private versions are 404 for everyone but admins"""
    include_private = bool(user and is_admin(user, supabase))
    return service.get_version(version_id, include_private=include_private)


@router.put("/{version_id}", response_model=VersionResponse)
async def update_version(
    version_id: str,
    version_data: VersionUpdate,
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    return service.update_version(version_id, version_data)


@router.post("/{version_id}/latest", response_model=VersionResponse)
async def set_latest_version(
    version_id: str,
    user_data: Dict = Depends(require_admin),
    service: ApkService = Depends(get_admin_apk_service),
):
    """Mark a version as the latest release"""
    return service.set_latest_version(version_id)


@router.get("/{version_id}/download-url", response_model=DownloadUrlResponse)
async def get_download_url(
    version_id: str,
    user: Optional[Dict] = Depends(get_optional_user),
    service: ApkService = Depends(get_admin_apk_service),
    supabase: Client = Depends(get_supabase),
):
    """Public URL for public buckets, a time-limited signed URL otherwise. Private versions are admin-only."""
    include_private = bool(user and is_admin(user, supabase))
    return service.get_download_url(version_id, include_private=include_private)
