import httpx
import pytest
from fastapi import HTTPException

from apkportal.modules.installations.schemas import InstallationCreate
from apkportal.modules.installations.service import InstallationService
from tests.fake_supabase import FakeAPIError


@pytest.fixture
def installation_service(fake_supabase, download_service):
    return InstallationService(fake_supabase, download_service)


@pytest.fixture
def version(fake_supabase):
    return fake_supabase.seed("app_versions", {"version_name": "1.0.0", "version_code": 100})[0]


def test_install_records_a_download(installation_service, fake_supabase, version):
    installation = installation_service.record_installation(
        InstallationCreate(app_version_id=version["id"], device_id="dev-1"),
        user={"id": "user-1"},
    )

    assert installation.status == "installed"
    assert installation.user_id == "user-1"
    downloads = fake_supabase.rows("downloads")
    assert len(downloads) == 1
    assert downloads[0]["app_version_id"] == version["id"]
    assert downloads[0]["metadata"] == {"source": "installation", "device_id": "dev-1"}


def test_update_and_uninstall_do_not_count_as_downloads(installation_service, fake_supabase, version):
    for status in ("updated", "uninstalled"):
        installation_service.record_installation(
            InstallationCreate(app_version_id=version["id"], device_id="dev-1", status=status)
        )
    assert fake_supabase.rows("downloads") == []
    assert len(fake_supabase.rows("installations")) == 2


def test_install_download_is_queued_when_offline(installation_service, fake_supabase, outbox, version):
    fake_supabase.fail("table:downloads:upsert", httpx.ConnectError("Connection refused"))

    installation_service.record_installation(InstallationCreate(app_version_id=version["id"], device_id="dev-1"))

    assert len(fake_supabase.rows("installations")) == 1
    assert outbox.pending_count() == 1


def test_install_failure_is_500(installation_service, fake_supabase, version):
    fake_supabase.fail("table:installations:insert", FakeAPIError("boom"))
    with pytest.raises(HTTPException) as exc_info:
        installation_service.record_installation(InstallationCreate(app_version_id=version["id"], device_id="d"))
    assert exc_info.value.status_code == 500
    assert fake_supabase.rows("downloads") == []


def test_install_of_unknown_version_is_422(installation_service, fake_supabase, outbox, version):
    fake_supabase.fail(
        "table:installations:insert",
        FakeAPIError('insert or update on table "installations" violates foreign key constraint', code="23503"),
    )
    with pytest.raises(HTTPException) as exc_info:
        installation_service.record_installation(InstallationCreate(app_version_id=version["id"], device_id="d"))
    assert exc_info.value.status_code == 422
    assert outbox.pending_count() == 0


def test_user_installations_newest_first(installation_service, fake_supabase, version):
    fake_supabase.seed(
        "installations",
        {"user_id": "u1", "app_version_id": version["id"], "device_id": "a", "status": "installed",
         "installation_date": "2024-01-01T00:00:00+00:00"},
        {"user_id": "u1", "app_version_id": version["id"], "device_id": "b", "status": "updated",
         "installation_date": "2024-02-01T00:00:00+00:00"},
        {"user_id": "u2", "app_version_id": version["id"], "device_id": "c", "status": "installed",
         "installation_date": "2024-03-01T00:00:00+00:00"},
    )

    installations = installation_service.get_user_installations("u1")

    assert [i.device_id for i in installations] == ["b", "a"]
    assert installations[0].app_version["version_name"] == "1.0.0"


def test_installation_stats(installation_service, fake_supabase, version):
    fake_supabase.seed(
        "installations",
        {"app_version_id": version["id"], "device_id": "a", "status": "installed"},
        {"app_version_id": version["id"], "device_id": "b", "status": "updated"},
        {"app_version_id": version["id"], "device_id": "c", "status": "uninstalled"},
    )

    stats = installation_service.get_installation_stats()

    assert stats.total == 1
    assert stats.active == 2
    assert stats.by_version == {"1.0.0": 2}


def test_installation_stats_without_breakdown_function(installation_service, fake_supabase):
    del fake_supabase.rpc_handlers["get_installations_by_version"]
    stats = installation_service.get_installation_stats()
    assert stats.by_version == {}
