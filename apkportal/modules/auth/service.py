import hashlib
import hmac
import os
import secrets
import time
from datetime import datetime, timezone
from supabase import Client, create_client
from apkportal.config.settings import settings
from apkportal.core.errors import (
    error_message, is_already_registered, is_email_not_confirmed,
    is_invalid_credentials, is_network_error,
)
from apkportal.database.local_store import (
    LocalStore, LOCAL_USERS_KEY, REMEMBERED_EMAIL_KEY, SESSIONS_KEY,
)
from apkportal.modules.activities.service import ActivityService, is_local_user_id
from apkportal.modules.auth.schemas import (
    SignUpRequest, SignInRequest, AuthResponse, UserData, OAuthUrlResponse,
)
from apkportal.modules.users.service import UserService
from fastapi import HTTPException
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

# In-memory cache for verify_token to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500

_PBKDF2_ITERATIONS = 200_000

LOCAL_SESSION_PREFIX = "local-session-"
_MAX_CACHED_SESSIONS = 1000


def hash_password(password: str, salt: Optional[bytes] = None) -> Dict[str, str]:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ITERATIONS)
    return {"salt": salt.hex(), "password_hash": digest.hex()}


def verify_password(password: str, record: Dict[str, Any]) -> bool:
    try:
        salt = bytes.fromhex(record["salt"])
    except (KeyError, ValueError, TypeError):
        return False
    expected = hash_password(password, salt)["password_hash"]
    return hmac.compare_digest(expected, record.get("password_hash", ""))


def clear_token_cache() -> None:
    _AUTH_USER_CACHE.clear()


def _token_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def is_local_session(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(LOCAL_SESSION_PREFIX)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class AuthService:
    def __init__(
        self,
        supabase: Client,
        store: LocalStore,
        users: Optional[UserService] = None,
        activities: Optional[ActivityService] = None,
    ):
        self.supabase = supabase
        self.store = store
        self.users = users or UserService(supabase)
        self.activities = activities or ActivityService(supabase)

    def _user_from_auth(self, user: Any, fallback_email: str = "") -> UserData:
        metadata = getattr(user, "user_metadata", None) or {}
        return UserData(
            id=user.id,
            email=user.email or fallback_email,
            name=metadata.get("full_name") or metadata.get("name"),
            created_at=_iso(getattr(user, "created_at", None)),
        )

    def _user_from_token_data(self, user_data: Dict[str, Any]) -> UserData:
        return UserData(
            id=user_data["id"],
            email=user_data.get("email") or "",
            name=(user_data.get("user_metadata") or {}).get("full_name"),
            created_at=_iso(user_data.get("created_at")),
        )

    def _cache_session(self, token: Optional[str], user: UserData) -> None:
        if not token:
            return
        key = _token_key(token)

        def add_session(sessions):
            sessions = dict(sessions or {})
            sessions.pop(key, None)
            sessions[key] = user.model_dump()
            # Oldest first; sessions that never signed out age out
            while len(sessions) > _MAX_CACHED_SESSIONS:
                sessions.pop(next(iter(sessions)))
            return sessions

        self.store.update(SESSIONS_KEY, add_session, default={})

    def _cached_session(self, token: str) -> Optional[UserData]:
        cached = (self.store.get(SESSIONS_KEY) or {}).get(_token_key(token))
        if not cached:
            return None
        try:
            return UserData(**cached)
        except Exception as e:
            logger.error(f"Error parsing cached session, dropping it: {e}")
            self._drop_session(token)
            return None

    def _drop_session(self, token: str) -> None:
        key = _token_key(token)

        def remove_session(sessions):
            sessions = dict(sessions or {})
            sessions.pop(key, None)
            return sessions

        self.store.update(SESSIONS_KEY, remove_session, default={})

    def _after_remote_auth(self, user: UserData, activity_type: str, method: str, token: Optional[str]) -> None:
        """Best-effort profile creation and activity log for a freshly authenticated user"""
        self.users.ensure_profile(user.id, user.email, user.name)
        self.activities.track_activity_background(
            user.id,
            activity_type,
            {},
            {"method": method, "timestamp": datetime.now(timezone.utc).isoformat()},
        )
        self._cache_session(token, user)

    def sign_up(self, signup_data: SignUpRequest) -> AuthResponse:
        """Register a new user; falls back to a local account when Supabase is unreachable"""
        user_metadata = {}
        if signup_data.full_name:
            user_metadata["full_name"] = signup_data.full_name

        try:
            auth_response = self.supabase.auth.sign_up({
                "email": signup_data.email,
                "password": signup_data.password,
                "options": {
                    "email_redirect_to": settings.auth_redirect_url,
                    "data": user_metadata
                }
            })
        except Exception as e:
            if is_network_error(e):
                logger.warning(f"Network error during sign up, using local fallback: {error_message(e)}")
                return self._local_sign_up(signup_data)
            message = error_message(e)
            logger.error(f"Supabase sign up error: {message}")
            if is_already_registered(e):
                raise HTTPException(status_code=409, detail="This email is already registered. Try signing in instead.")
            if "password" in message.lower():
                raise HTTPException(status_code=400, detail=f"Password rejected: {message}")
            if "email" in message.lower():
                raise HTTPException(status_code=400, detail="Please provide a valid email address.")
            raise HTTPException(status_code=400, detail=f"Sign up failed: {message}")

        if not auth_response.user:
            return AuthResponse(message="Sign up submitted. Please check your email to verify your account.")

        user = self._user_from_auth(auth_response.user, signup_data.email)
        if not user.name and signup_data.full_name:
            user.name = signup_data.full_name
        session = auth_response.session
        self._after_remote_auth(user, "signup", "email", session.access_token if session else None)

        return AuthResponse(
            user=user,
            access_token=session.access_token if session else None,
            refresh_token=session.refresh_token if session else None,
            message="User registered successfully" if session
            else "User registered. Please check your email to verify your account.",
        )

    def _local_sign_up(self, signup_data: SignUpRequest) -> AuthResponse:
        email = signup_data.email.lower()
        created_at = datetime.now(timezone.utc).isoformat()
        user = UserData(
            id=f"local-{int(time.time() * 1000)}",
            email=signup_data.email,
            name=signup_data.full_name,
            created_at=created_at,
            offline=True,
        )

        def add_local_user(local_users):
            local_users = list(local_users or [])
            if any(u.get("email", "").lower() == email for u in local_users):
                raise HTTPException(status_code=409, detail="This email is already registered. Try signing in instead.")
            local_users.append({
                "id": user.id,
                "email": signup_data.email,
                "name": signup_data.full_name,
                "created_at": created_at,
                **hash_password(signup_data.password),
            })
            return local_users

        self.store.update(LOCAL_USERS_KEY, add_local_user, default=[])
        token = self._local_session(user)
        return AuthResponse(
            user=user,
            access_token=token,
            offline=True,
            message="Backend unreachable; account created locally and will work offline on this server.",
        )

    def sign_in(self, login_data: SignInRequest) -> AuthResponse:
        """Authenticate with Supabase; falls back to local accounts when Supabase is unreachable"""
        try:
            auth_response = self.supabase.auth.sign_in_with_password({
                "email": login_data.email,
                "password": login_data.password
            })
        except Exception as e:
            if is_network_error(e):
                logger.warning(f"Network error during sign in, using local fallback: {error_message(e)}")
                return self._local_sign_in(login_data)
            logger.error(f"Login error: {error_message(e)}")
            if is_email_not_confirmed(e):
                raise HTTPException(status_code=403, detail="Please confirm your email before signing in.")
            if is_invalid_credentials(e):
                raise HTTPException(status_code=401, detail="Invalid email or password. Please try again.")
            raise HTTPException(status_code=401, detail=f"Login failed: {error_message(e)}")

        if not auth_response.user or not auth_response.session:
            raise HTTPException(status_code=401, detail="Invalid email or password. Please try again.")

        user = self._user_from_auth(auth_response.user, login_data.email)
        self._after_remote_auth(user, "login", "email", auth_response.session.access_token)
        self._remember(login_data)

        return AuthResponse(
            user=user,
            access_token=auth_response.session.access_token,
            refresh_token=auth_response.session.refresh_token,
            message="Signed in successfully",
        )

    def _local_sign_in(self, login_data: SignInRequest) -> AuthResponse:
        email = login_data.email.lower()
        local_users = self.store.get(LOCAL_USERS_KEY, []) or []
        record = next((u for u in local_users if u.get("email", "").lower() == email), None)
        if not record or not verify_password(login_data.password, record):
            raise HTTPException(status_code=401, detail="Invalid email or password")

        user = UserData(
            id=record["id"],
            email=record["email"],
            name=record.get("name"),
            created_at=record.get("created_at"),
            offline=True,
        )
        token = self._local_session(user)
        self._remember(login_data)
        return AuthResponse(user=user, access_token=token, offline=True, message="Signed in (offline mode)")

    def _local_session(self, user: UserData) -> str:
        """Issue a bearer token that only this server's local store knows about"""
        token = f"{LOCAL_SESSION_PREFIX}{secrets.token_urlsafe(32)}"
        self._cache_session(token, user)
        return token

    def _remember(self, login_data: SignInRequest) -> None:
        if login_data.remember:
            self.store.set(REMEMBERED_EMAIL_KEY, login_data.email)
        else:
            self.store.remove(REMEMBERED_EMAIL_KEY)

    def get_remembered_email(self) -> Optional[str]:
        return self.store.get(REMEMBERED_EMAIL_KEY)

    def forget_remembered_email(self) -> None:
        self.store.remove(REMEMBERED_EMAIL_KEY)

    def sign_out(self, token: Optional[str] = None) -> bool:
        """Sign out the session behind token; its cached entry is always dropped.

        Without a token there is no session to end and nothing is touched.
        """
        if not token:
            return True

        user = self._cached_session(token)
        if user is None and not is_local_session(token):
            try:
                user = self._user_from_token_data(self.verify_token(token))
            except HTTPException as e:
                logger.warning(f"Could not resolve user for sign out: {e.detail}")

        try:
            if user and not is_local_user_id(user.id):
                self.activities.track_activity_background(
                    user.id, "logout", {}, {"timestamp": datetime.now(timezone.utc).isoformat()}
                )
            if not is_local_session(token):
                self.supabase.auth.admin.sign_out(token)
        except Exception as e:
            logger.warning(f"Remote sign out failed: {e}")
        finally:
            self._drop_session(token)
            _AUTH_USER_CACHE.pop(_token_key(token), None)
        return True

    def get_current_user(self, token: Optional[str] = None) -> Optional[UserData]:
        """User behind a bearer token, or None.

        Offline sessions are answered from the local store. Supabase sessions
        are verified remotely and fall back to the cached session only when
        Supabase is unreachable.
        """
        if not token:
            return None
        if is_local_session(token):
            return self._cached_session(token)

        try:
            user_data = self.verify_token(token)
        except HTTPException as e:
            if e.status_code == 503:
                cached = self._cached_session(token)
                if cached is not None:
                    logger.warning(f"Auth service unreachable, using cached session for {cached.id}")
                    return cached
            raise
        return self._user_from_token_data(user_data)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Get current user details from Supabase Auth token. Uses short TTL cache to reduce auth API calls."""
        try:
            cache_key = _token_key(token)
            now = time.monotonic()
            if cache_key in _AUTH_USER_CACHE:
                user_data, expiry = _AUTH_USER_CACHE[cache_key]
                if now < expiry:
                    return user_data
                del _AUTH_USER_CACHE[cache_key]
            user_response = self.supabase.auth.get_user(jwt=token)
            if not user_response or not user_response.user:
                raise HTTPException(status_code=401, detail="Invalid or expired token")
            user = user_response.user
            user_data = {
                "id": user.id,
                "email": user.email,
                "user_metadata": user.user_metadata or {},
                "app_metadata": user.app_metadata or {},
                "created_at": _iso(user.created_at),
            }
            if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
                _AUTH_USER_CACHE[cache_key] = (user_data, now + _AUTH_CACHE_TTL_SEC)
            return user_data
        except HTTPException:
            raise
        except Exception as e:
            error_msg = error_message(e)
            if is_network_error(e):
                raise HTTPException(status_code=503, detail="Authentication service unreachable")
            if "JWT" in error_msg or "expired" in error_msg.lower() or "invalid" in error_msg.lower():
                raise HTTPException(status_code=401, detail="Invalid or expired token")
            raise HTTPException(status_code=401, detail="Authentication failed")

    def oauth_url(self, provider: str) -> OAuthUrlResponse:
        """Provider sign-in URL; the provider redirects back to <site_url>/auth/callback"""
        try:
            response = self.supabase.auth.sign_in_with_oauth({
                "provider": provider,
                "options": {"redirect_to": settings.auth_redirect_url}
            })
        except Exception as e:
            logger.error(f"Error starting {provider} sign in: {e}")
            raise HTTPException(status_code=502, detail=f"{provider.title()} sign in failed: {error_message(e)}")
        return OAuthUrlResponse(provider=provider, url=response.url)

    def exchange_code(self, code: str) -> AuthResponse:
        """Complete the OAuth callback"""
        try:
            auth_response = self.supabase.auth.exchange_code_for_session({"auth_code": code})
        except Exception as e:
            logger.error(f"OAuth code exchange failed: {e}")
            raise HTTPException(status_code=400, detail=f"Could not complete sign in: {error_message(e)}")

        if not auth_response.user or not auth_response.session:
            raise HTTPException(status_code=400, detail="Could not complete sign in")

        user = self._user_from_auth(auth_response.user)
        self._after_remote_auth(user, "login", "oauth", auth_response.session.access_token)
        return AuthResponse(
            user=user,
            access_token=auth_response.session.access_token,
            refresh_token=auth_response.session.refresh_token,
            message="Signed in successfully",
        )

    def set_admin(self, user_id: str, is_admin: bool = True) -> bool:
        """Set admin status in app_metadata (requires service role key)"""
        try:
            service_role_key = getattr(settings, 'supabase_service_role_key', None)
            if not service_role_key:
                raise HTTPException(
                    status_code=500,
                    detail="Service role key not configured. Cannot update app_metadata."
                )

            admin_client = create_client(settings.supabase_url, service_role_key)

            app_metadata = {"type": "super_user"} if is_admin else {}

            response = admin_client.auth.admin.update_user_by_id(
                user_id,
                {"app_metadata": app_metadata}
            )

            if not response.user:
                raise HTTPException(status_code=404, detail="User not found")

            return True
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(
                status_code=500,
                detail=f"Failed to update admin status: {str(e)}"
            )
