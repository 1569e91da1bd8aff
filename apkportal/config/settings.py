from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for admin operations like bucket creation

    # Public site (OAuth / email confirmation redirects land on <site_url>/auth/callback)
    site_url: str = "http://localhost:5173"

    # APK storage
    apk_bucket: str = "apk-files"
    apk_bucket_public: bool = True
    apk_max_file_size: int = 100 * 1024 * 1024  # 100MB
    signed_url_expires_in: int = 3600

    # AWS S3 (optional APK backend, read from uppercase env vars automatically)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    s3_bucket_name: Optional[str] = None

    # Local fallback store and download outbox
    local_store_path: str = ".apkportal/local_store.json"
    outbox_flush_enabled: bool = True
    outbox_flush_interval: float = 30.0  # seconds between background sync passes
    outbox_backoff_base: float = 5.0
    outbox_backoff_max: float = 900.0
    outbox_max_entries: int = 10000

    # Fire-and-forget side calls (activity log, last_active touch)
    background_max_retries: int = 3
    background_retry_delay: float = 1.0
    background_workers: int = 2

    # App
    app_name: str = "apkportal-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def auth_redirect_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/auth/callback"

    @property
    def s3_configured(self) -> bool:
        return all([self.aws_access_key_id, self.aws_secret_access_key, self.s3_bucket_name])

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
