import os

# Settings are read once at import time
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ["OUTBOX_FLUSH_ENABLED"] = "false"
os.environ["AWS_ACCESS_KEY_ID"] = ""
os.environ["AWS_SECRET_ACCESS_KEY"] = ""
os.environ["S3_BUCKET_NAME"] = ""
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient

from apkportal.core import dependencies
from apkportal.core.background import BackgroundRunner
from apkportal.database import supabase_client
from apkportal.database.local_store import LocalStore
from apkportal.modules.activities.service import ActivityService
from apkportal.modules.auth.service import AuthService, clear_token_cache
from apkportal.modules.downloads.outbox import DownloadOutbox
from apkportal.modules.downloads.service import DownloadService
from apkportal.modules.users.service import UserService
from tests.fake_supabase import FakeSupabase


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_auth_cache():
    clear_token_cache()
    yield
    clear_token_cache()


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "local_store.json"))


@pytest.fixture
def runner():
    return BackgroundRunner(max_retries=1, retry_delay=0, inline=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox(store, clock):
    return DownloadOutbox(store, max_entries=100, backoff_base=5, backoff_max=60, clock=clock)


@pytest.fixture
def activity_service(fake_supabase, runner):
    return ActivityService(fake_supabase, runner)


@pytest.fixture
def user_service(fake_supabase):
    return UserService(fake_supabase)


@pytest.fixture
def auth_service(fake_supabase, store, user_service, activity_service):
    return AuthService(fake_supabase, store, user_service, activity_service)


@pytest.fixture
def download_service(fake_supabase, outbox, activity_service):
    return DownloadService(fake_supabase, outbox, activity_service)


@pytest.fixture
def app(fake_supabase, store, outbox, runner):
    from apkportal.main import app

    app.dependency_overrides[supabase_client.get_supabase] = lambda: fake_supabase
    app.dependency_overrides[supabase_client.get_service_supabase] = lambda: fake_supabase
    app.dependency_overrides[dependencies.get_store] = lambda: store
    app.dependency_overrides[dependencies.get_outbox] = lambda: outbox
    app.dependency_overrides[dependencies.get_runner] = lambda: runner
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(fake_supabase):
    """Create an auth user and return (user, auth headers)"""

    def _make(email="user@example.com", admin=False, **kwargs):
        app_metadata = {"type": "super_user"} if admin else {}
        user = fake_supabase.auth.create_user(email, app_metadata=app_metadata, **kwargs)
        token = fake_supabase.auth.issue_token(user.id)
        return user, {"Authorization": f"Bearer {token}"}

    return _make
