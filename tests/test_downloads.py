import time
import uuid

import httpx
import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from apkportal.modules.downloads.flusher import OutboxFlusher
from apkportal.modules.downloads.schemas import DownloadCreate
from apkportal.modules.downloads.service import parse_user_agent
from tests.fake_supabase import FakeAPIError

ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Mobile Safari/537.36"
)
VERSION_ID = str(uuid.uuid4())


def go_offline(fake_supabase):
    fake_supabase.fail("table:downloads:upsert", httpx.ConnectError("Connection refused"))


def test_parse_user_agent():
    info = parse_user_agent(ANDROID_UA)
    assert info == {"userAgent": ANDROID_UA, "browser": "Chrome", "os": "Android", "device": "Mobile"}
    assert parse_user_agent(None)["browser"] == "Unknown"
    assert parse_user_agent("Mozilla/5.0 (iPad; CPU OS 17_0) Safari/604.1")["device"] == "Tablet"


def test_download_requires_a_version():
    with pytest.raises(ValidationError):
        DownloadCreate()


def test_download_version_id_must_be_a_uuid():
    with pytest.raises(ValidationError):
        DownloadCreate(app_version_id="v1")
    assert str(DownloadCreate(app_version_id=VERSION_ID).app_version_id) == VERSION_ID


def test_record_download_online(download_service, fake_supabase):
    result = download_service.record_download(
        DownloadCreate(app_version_id=VERSION_ID, email="fan@example.com"),
        user_agent=ANDROID_UA,
    )

    assert result.synced is True
    rows = fake_supabase.rows("downloads")
    assert len(rows) == 1
    row = rows[0]
    assert row["client_event_id"] == result.id
    assert row["app_version_id"] == VERSION_ID
    assert row["email"] == "fan@example.com"
    assert row["ip_address"] == "anonymous"
    assert row["device_info"]["os"] == "Android"
    assert row["user_id"] is None


def test_record_download_logs_activity_for_signed_in_user(download_service, fake_supabase):
    download_service.record_download(
        DownloadCreate(app_version="1.2.0"),
        user={"id": "user-1", "email": "u@example.com"},
    )

    assert fake_supabase.rows("downloads")[0]["user_id"] == "user-1"
    activities = fake_supabase.rows("user_activities")
    assert [a["activity_type"] for a in activities] == ["download"]
    assert activities[0]["activity_data"]["app_version"] == "1.2.0"


def test_local_user_id_is_never_sent(download_service, fake_supabase):
    download_service.record_download(DownloadCreate(app_version="v1"), user={"id": "local-1700000000000"})

    assert fake_supabase.rows("downloads")[0]["user_id"] is None
    assert fake_supabase.rows("user_activities") == []


def test_failed_download_is_queued_exactly_once(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)

    result = download_service.record_download(DownloadCreate(app_version="v1"))

    assert result.synced is False
    assert result.id.startswith("local-")
    entries = outbox.entries()
    assert len(entries) == 1
    assert entries[0]["local_id"] == result.id
    assert fake_supabase.rows("downloads") == []


def test_any_exception_queues(download_service, fake_supabase, outbox):
    fake_supabase.fail("table:downloads:upsert", ValueError("unexpected payload"))
    result = download_service.record_download(DownloadCreate(app_version="v1"))
    assert result.synced is False
    assert outbox.pending_count() == 1


def test_two_offline_downloads_get_unique_ids(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)

    first = download_service.record_download(DownloadCreate(app_version="v1"))
    second = download_service.record_download(DownloadCreate(app_version="v1"))

    assert first.id != second.id
    assert len({e["local_id"] for e in outbox.entries()}) == 2


def test_sync_writes_queued_downloads_once(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version="v1"))
    download_service.record_download(DownloadCreate(app_version="v2"))
    fake_supabase.clear_failures()

    first = download_service.sync()
    second = download_service.sync()

    assert first.synced == 2
    assert first.remaining == 0
    assert second.synced == 0
    assert sorted(r["app_version"] for r in fake_supabase.rows("downloads")) == ["v1", "v2"]


def test_sync_keeps_entries_that_fail(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version="v1"))

    result = download_service.sync(force=True)

    assert result.synced == 0
    assert result.failed == 1
    assert result.remaining == 1
    assert outbox.entries()[0]["attempts"] == 1


def test_sync_after_ambiguous_failure_does_not_duplicate(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version="v1"))
    fake_supabase.clear_failures()

    # The first attempt reached the database even though the client saw an error
    entry = outbox.entries()[0]
    fake_supabase.seed("downloads", {**entry["payload"], "client_event_id": entry["idempotency_key"]})

    result = download_service.sync()

    assert result.synced == 1
    assert outbox.pending_count() == 0
    assert len(fake_supabase.rows("downloads")) == 1


def test_total_downloads_uses_rpc_then_falls_back(download_service, fake_supabase):
    fake_supabase.seed("downloads", {"app_version_id": "a"}, {"app_version_id": "b"})
    assert download_service.get_total_downloads() == 2

    del fake_supabase.rpc_handlers["get_total_downloads"]
    assert download_service.get_total_downloads() == 2


def test_version_downloads(download_service, fake_supabase):
    version = fake_supabase.seed("app_versions", {"version_name": "1.0", "version_code": 1})[0]
    fake_supabase.seed("downloads", {"app_version_id": version["id"]}, {"app_version_id": version["id"]})

    assert download_service.get_version_downloads(version["id"]) == 2

    del fake_supabase.rpc_handlers["get_download_count"]
    assert download_service.get_version_downloads(version["id"]) == 2


def test_download_stats_include_pending_events(download_service, fake_supabase):
    version = fake_supabase.seed("app_versions", {"version_name": "1.0", "version_code": 1})[0]
    fake_supabase.seed(
        "downloads",
        {"app_version_id": version["id"], "platform": "android", "download_date": "2024-01-02"},
        {"app_version_id": version["id"], "platform": "web", "download_date": "2024-01-01"},
    )
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version_id=version["id"]))

    stats = download_service.get_download_stats()

    assert stats.total == 3
    assert stats.local_count == 1
    assert stats.by_version[version["id"]] == 3
    assert stats.platforms == {"android": 1, "web": 1}
    assert stats.recent[0]["download_date"] == "2024-01-02"


def test_user_downloads_embed_version(download_service, fake_supabase):
    version = fake_supabase.seed("app_versions", {"version_name": "2.0", "version_code": 2})[0]
    fake_supabase.seed("downloads", {"app_version_id": version["id"], "user_id": "u1", "download_date": "2024-01-01"})

    rows = download_service.get_user_downloads("u1")
    assert rows[0]["app_version"]["version_name"] == "2.0"


def test_flusher_sync_now_and_thread(download_service, fake_supabase):
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version="v1"))
    fake_supabase.clear_failures()

    flusher = OutboxFlusher(service_factory=lambda: download_service, interval=0.01)
    flusher.start()
    try:
        deadline = time.time() + 5
        while download_service.outbox.pending_count() and time.time() < deadline:
            time.sleep(0.01)
    finally:
        flusher.stop()

    assert not flusher.is_running
    assert download_service.outbox.pending_count() == 0
    assert len(fake_supabase.rows("downloads")) == 1


def test_flusher_survives_factory_errors():
    def broken():
        raise RuntimeError("no client")

    assert OutboxFlusher(service_factory=broken, interval=1).sync_now() is None


def test_rejected_download_is_not_queued(download_service, fake_supabase, outbox):
    fake_supabase.fail(
        "table:downloads:upsert",
        FakeAPIError('insert or update on table "downloads" violates foreign key constraint', code="23503"),
    )

    with pytest.raises(HTTPException) as exc_info:
        download_service.record_download(DownloadCreate(app_version_id=VERSION_ID))

    assert exc_info.value.status_code == 422
    assert outbox.pending_count() == 0


def test_sync_dead_letters_rejected_entries(download_service, fake_supabase, outbox):
    go_offline(fake_supabase)
    download_service.record_download(DownloadCreate(app_version_id=VERSION_ID))
    download_service.record_download(DownloadCreate(app_version="v2"))
    fake_supabase.clear_failures()
    fake_supabase.fail(
        "table:downloads:upsert",
        FakeAPIError('insert or update on table "downloads" violates foreign key constraint', code="23503"),
        times=1,
    )

    first = download_service.sync()
    second = download_service.sync(force=True)

    assert (first.synced, first.failed, first.dead_lettered, first.remaining) == (1, 0, 1, 0)
    assert second.synced == 0 and second.dead_lettered == 0
    dead = download_service.dead_letters()
    assert [d["payload"]["app_version_id"] for d in dead] == [VERSION_ID]
    assert "foreign key" in dead[0]["last_error"]
    assert [r["app_version"] for r in fake_supabase.rows("downloads")] == ["v2"]


def test_download_stats_fallback_counts_past_row_cap(download_service, fake_supabase):
    fake_supabase.seed("downloads", *({"app_version_id": VERSION_ID, "platform": "android"} for _ in range(3)))
    fake_supabase.max_rows = 2
    del fake_supabase.rpc_handlers["get_download_count"]

    assert download_service.get_download_stats().total == 3
