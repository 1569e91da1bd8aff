import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from apkportal.config import settings
from apkportal.core.background import get_background_runner, reset_background_runner
from apkportal.database.supabase_client import get_supabase
from apkportal.modules.downloads.flusher import OutboxFlusher
from apkportal.modules.users import routes as users_routes
from apkportal.modules.auth import routes as auth_routes
from apkportal.modules.activities import routes as activities_routes
from apkportal.modules.downloads import routes as downloads_routes
from apkportal.modules.installations import routes as installations_routes
from apkportal.modules.versions import routes as versions_routes
from apkportal.modules.contact import routes as contact_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

flusher = OutboxFlusher()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(users_routes.router, prefix="/api/v1")
app.include_router(activities_routes.router, prefix="/api/v1")
app.include_router(downloads_routes.router, prefix="/api/v1")
app.include_router(installations_routes.router, prefix="/api/v1")
app.include_router(versions_routes.router, prefix="/api/v1")
app.include_router(contact_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")
    if settings.outbox_flush_enabled and settings.supabase_url and settings.supabase_key:
        flusher.start()
    else:
        logger.info("Download outbox flusher disabled")


@app.on_event("shutdown")
async def shutdown_event():
    if flusher.is_running:
        flusher.stop()
    # Let queued activity writes finish before the process exits
    get_background_runner().shutdown(wait=True)
    reset_background_runner()
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: the database must answer a trivial query"""
    try:
        get_supabase().table("app_versions").select("id").limit(1).execute()
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "detail": str(e)})
    return {"status": "ready"}
