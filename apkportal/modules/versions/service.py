from supabase import Client
from apkportal.config import settings
from apkportal.core.errors import error_message, is_already_exists, is_unique_violation
from apkportal.modules.versions.s3_storage import S3Storage
from apkportal.modules.versions.schemas import (
    VersionCreate, VersionUpdate, VersionResponse, ApkFileUpdate, ApkFileResponse,
    DownloadUrlResponse, BucketStatusResponse,
)
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import HTTPException, UploadFile
import hashlib
import logging

logger = logging.getLogger(__name__)

APK_MIME_TYPE = "application/vnd.android.package-archive"
ALLOWED_MIME_TYPES = [APK_MIME_TYPE, "application/octet-stream"]
VERSION_SELECT = "*, apk_file:apk_files(*), download_count:downloads(count)"


def _bucket_name(bucket: Any) -> Optional[str]:
    if isinstance(bucket, dict):
        return bucket.get("name") or bucket.get("id")
    return getattr(bucket, "name", None) or getattr(bucket, "id", None)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApkService:
    def __init__(self, supabase: Client, s3_storage: Optional[S3Storage] = None):
        self.supabase = supabase
        self.bucket = settings.apk_bucket

        # S3 is used for binaries when configured, Supabase Storage otherwise
        self.s3_storage = s3_storage
        if self.s3_storage is None and settings.s3_configured:
            try:
                self.s3_storage = S3Storage()
                logger.info("S3 storage initialized successfully")
            except Exception as e:
                logger.warning(f"S3 storage initialization failed ({str(e)}), will use Supabase Storage")
                self.s3_storage = None

    def ensure_bucket(self) -> BucketStatusResponse:
        """Create the APK bucket if it does not exist yet"""
        if self.s3_storage:
            return BucketStatusResponse(success=True, bucket=self.s3_storage.bucket_name)
        try:
            buckets = self.supabase.storage.list_buckets() or []
            if any(_bucket_name(b) == self.bucket for b in buckets):
                return BucketStatusResponse(success=True, bucket=self.bucket)
            self.supabase.storage.create_bucket(
                self.bucket,
                options={
                    "public": settings.apk_bucket_public,
                    "file_size_limit": settings.apk_max_file_size,
                    "allowed_mime_types": ALLOWED_MIME_TYPES,
                }
            )
            logger.info(f"Created storage bucket {self.bucket}")
            return BucketStatusResponse(success=True, bucket=self.bucket, created=True)
        except Exception as e:
            # A concurrent creator may have won the race
            if "already exists" in str(e).lower():
                return BucketStatusResponse(success=True, bucket=self.bucket)
            logger.error(f"Error ensuring APK bucket: {e}")
            return BucketStatusResponse(success=False, bucket=self.bucket, error=str(e))

    def _store_binary(self, path: str, content: bytes, content_type: str) -> None:
        if self.s3_storage:
            self.s3_storage.upload_file(content, path, content_type)
            return
        self.supabase.storage.from_(self.bucket).upload(
            path,
            content,
            file_options={"content-type": content_type, "cache-control": "3600", "upsert": "false"}
        )

    def _check_release_is_new(self, version_code: int, storage_path: str) -> None:
        try:
            version = self.supabase.table("app_versions")\
                .select("id")\
                .eq("version_code", version_code)\
                .limit(1)\
                .execute()
            apk_file = self.supabase.table("apk_files")\
                .select("id")\
                .eq("storage_path", storage_path)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error checking for existing release {version_code}: {e}")
            raise HTTPException(status_code=500, detail=error_message(e))
        if version.data:
            raise HTTPException(status_code=409, detail=f"Version code {version_code} already exists")
        if apk_file.data:
            raise HTTPException(status_code=409, detail=f"An APK already exists at {storage_path}")

    def _remove_binary(self, path: str) -> None:
        try:
            if self.s3_storage:
                self.s3_storage.delete_file(path)
            else:
                self.supabase.storage.from_(self.bucket).remove([path])
            logger.info(f"Removed orphaned APK {path}")
        except Exception as e:
            logger.warning(f"Failed to remove orphaned APK {path}: {e}")

    def _public_url(self, path: str) -> Optional[str]:
        if self.s3_storage:
            return self.s3_storage.public_url(path) if settings.apk_bucket_public else None
        if not settings.apk_bucket_public:
            return None
        return self.supabase.storage.from_(self.bucket).get_public_url(path)

    async def upload_apk(self, file: UploadFile, version_data: VersionCreate) -> VersionResponse:
        """
        Upload an APK and register it as a new version.

        The binary goes to <version_name>/<version_code>/<file_name>, then an
        apk_files row and an app_versions row are inserted. A version code or
        path that is already taken is a 409 and storage is left untouched. If a
        later step fails, the rows and the binary this call created are removed
        best-effort and the error is raised.
        """
        if not file.filename or not file.filename.lower().endswith(".apk"):
            raise HTTPException(status_code=400, detail="Only APK files are accepted")

        content = await file.read()
        if not content:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        if len(content) > settings.apk_max_file_size:
            raise HTTPException(
                status_code=413,
                detail=f"APK exceeds the maximum size of {settings.apk_max_file_size} bytes"
            )

        status = self.ensure_bucket()
        if not status.success:
            raise HTTPException(status_code=500, detail=f"Storage bucket unavailable: {status.error}")

        content_type = file.content_type if file.content_type in ALLOWED_MIME_TYPES else APK_MIME_TYPE
        storage_path = f"{version_data.version_name}/{version_data.version_code}/{file.filename}"
        self._check_release_is_new(version_data.version_code, storage_path)

        try:
            self._store_binary(storage_path, content, content_type)
            logger.info(f"Uploaded APK to {storage_path}")
        except Exception as e:
            if is_already_exists(e):
                logger.warning(f"Refusing to overwrite existing APK at {storage_path}")
                raise HTTPException(status_code=409, detail=f"An APK already exists at {storage_path}")
            logger.error(f"APK upload failed: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Failed to upload to storage: {str(e)}")

        apk_file_id = None
        try:
            now = _now()
            apk_result = self.supabase.table("apk_files").insert({
                "file_name": file.filename,
                "version_name": version_data.version_name,
                "version_code": version_data.version_code,
                "file_size": len(content),
                "mime_type": content_type,
                "storage_path": storage_path,
                "public_url": self._public_url(storage_path),
                "changelog": version_data.changelog,
                "checksum": hashlib.sha256(content).hexdigest(),
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }).execute()
            if not apk_result.data:
                raise HTTPException(status_code=500, detail="Failed to create APK file record")
            apk_file_id = apk_result.data[0]["id"]

            version_result = self.supabase.table("app_versions").insert({
                "version_name": version_data.version_name,
                "version_code": version_data.version_code,
                "release_date": now,
                "is_public": version_data.is_public,
                "is_required": version_data.is_required,
                "apk_file_id": apk_file_id,
                "changelog": version_data.changelog,
                "created_at": now,
                "updated_at": now,
            }).execute()
            if not version_result.data:
                raise HTTPException(status_code=500, detail="Failed to create app version")
            version_id = version_result.data[0]["id"]
        except Exception as e:
            detail = e.detail if isinstance(e, HTTPException) else str(e)
            logger.error(f"Registering APK {storage_path} failed, rolling back: {detail}")
            if apk_file_id:
                try:
                    self.supabase.table("apk_files").delete().eq("id", apk_file_id).execute()
                except Exception as cleanup_error:
                    logger.warning(f"Failed to delete apk_files row {apk_file_id}: {cleanup_error}")
            self._remove_binary(storage_path)
            if is_unique_violation(e):
                raise HTTPException(status_code=409, detail=f"Version code {version_data.version_code} already exists")
            raise HTTPException(status_code=500, detail=f"Failed to register APK: {detail}")

        return self.get_version(version_id)

    def list_versions(self, include_private: bool = False, limit: int = 10, offset: int = 0) -> List[VersionResponse]:
        try:
            query = self.supabase.table("app_versions").select(VERSION_SELECT)
            if not include_private:
                query = query.eq("is_public", True)
            result = query.order("version_code", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [VersionResponse(**row) for row in result.data or []]
        except Exception as e:
            logger.error(f"Error fetching app versions: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_version(self, version_id: str, include_private: bool = True) -> VersionResponse:
        """Private versions read as 404 unless include_private"""
        try:
            result = self.supabase.table("app_versions")\
                .select(VERSION_SELECT)\
                .eq("id", version_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching app version {version_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data or not (include_private or result.data[0].get("is_public")):
            raise HTTPException(status_code=404, detail="Version not found")
        return VersionResponse(**result.data[0])

    def get_latest_version(self) -> VersionResponse:
        """The public version flagged latest, or the public version with the highest code"""
        try:
            result = self.supabase.table("app_versions")\
                .select(VERSION_SELECT)\
                .eq("is_latest", True)\
                .eq("is_public", True)\
                .limit(1)\
                .execute()
            if not result.data:
                result = self.supabase.table("app_versions")\
                    .select(VERSION_SELECT)\
                    .eq("is_public", True)\
                    .order("version_code", desc=True)\
                    .limit(1)\
                    .execute()
        except Exception as e:
            logger.error(f"Error fetching latest version: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            raise HTTPException(status_code=404, detail="No published version")
        return VersionResponse(**result.data[0])

    def update_version(self, version_id: str, version_data: VersionUpdate) -> VersionResponse:
        update_data = version_data.model_dump(exclude_unset=True, mode="json")
        if not update_data:
            return self.get_version(version_id)
        update_data["updated_at"] = _now()
        try:
            result = self.supabase.table("app_versions")\
                .update(update_data)\
                .eq("id", version_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating app version: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            raise HTTPException(status_code=404, detail="Version not found")
        return self.get_version(version_id)

    def update_apk_file(self, file_id: str, file_data: ApkFileUpdate) -> ApkFileResponse:
        update_data = file_data.model_dump(exclude_unset=True)
        update_data["updated_at"] = _now()
        try:
            result = self.supabase.table("apk_files")\
                .update(update_data)\
                .eq("id", file_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating APK file: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            raise HTTPException(status_code=404, detail="APK file not found")
        return ApkFileResponse(**result.data[0])

    def set_latest_version(self, version_id: str) -> VersionResponse:
        """Flag one version as latest; clearing the others happens in the same database function"""
        try:
            self.supabase.rpc("set_latest_version", {"version_id": version_id}).execute()
        except Exception as e:
            logger.error(f"Error setting latest version: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return self.get_version(version_id)

    def create_signed_url(self, path: str, expires_in: Optional[int] = None) -> DownloadUrlResponse:
        expires_in = expires_in or settings.signed_url_expires_in
        try:
            if self.s3_storage:
                url = self.s3_storage.create_presigned_url(path, expires_in)
            else:
                data = self.supabase.storage.from_(self.bucket).create_signed_url(path, expires_in)
                # storage3 has returned both spellings
                url = (data or {}).get("signedURL") or (data or {}).get("signedUrl")
        except Exception as e:
            logger.error(f"Error creating signed URL for {path}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not url:
            raise HTTPException(status_code=404, detail="File not found")
        return DownloadUrlResponse(url=url, expires_in=expires_in)

    def get_download_url(self, version_id: str, include_private: bool = False) -> DownloadUrlResponse:
        version = self.get_version(version_id, include_private=include_private)
        if not version.apk_file:
            raise HTTPException(status_code=404, detail="Version has no APK file")
        if version.apk_file.public_url and settings.apk_bucket_public:
            return DownloadUrlResponse(url=version.apk_file.public_url, version_id=version_id)
        signed = self.create_signed_url(version.apk_file.storage_path)
        signed.version_id = version_id
        return signed
