import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from apkportal.modules.contact.schemas import ContactMessageCreate
from apkportal.modules.contact.service import ContactService
from tests.fake_supabase import FakeAPIError


@pytest.fixture
def contact_service(fake_supabase):
    return ContactService(fake_supabase)


def message(**overrides):
    data = {"name": "Ada", "email": "ada@example.com", "subject": "Hello", "message": "The app crashes on start"}
    data.update(overrides)
    return ContactMessageCreate(**data)


def test_submit_message(contact_service, fake_supabase):
    saved = contact_service.submit_message(message(), user={"id": "user-1"})

    assert saved.status == "new"
    assert saved.user_id == "user-1"
    assert fake_supabase.rows("contact_messages")[0]["message"] == "The app crashes on start"


def test_local_and_anonymous_senders_have_no_user(contact_service):
    assert contact_service.submit_message(message(), user={"id": "local-1"}).user_id is None
    assert contact_service.submit_message(message()).user_id is None


def test_message_validation():
    with pytest.raises(ValidationError):
        message(email="not-an-email")
    with pytest.raises(ValidationError):
        message(message="")


def test_submit_failure_is_500(contact_service, fake_supabase):
    fake_supabase.fail("table:contact_messages:insert", FakeAPIError("new row violates row-level security policy"))
    with pytest.raises(HTTPException) as exc_info:
        contact_service.submit_message(message())
    assert exc_info.value.status_code == 500


def test_list_and_filter_messages(contact_service, fake_supabase):
    fake_supabase.seed(
        "contact_messages",
        {"name": "A", "email": "a@example.com", "message": "one", "status": "new",
         "created_at": "2024-01-01T00:00:00+00:00"},
        {"name": "B", "email": "b@example.com", "message": "two", "status": "read",
         "created_at": "2024-01-02T00:00:00+00:00"},
        {"name": "C", "email": "c@example.com", "message": "three", "status": "new",
         "created_at": "2024-01-03T00:00:00+00:00"},
    )

    assert [m.name for m in contact_service.list_messages()] == ["C", "B", "A"]
    assert [m.name for m in contact_service.list_messages(status="new")] == ["C", "A"]
    assert [m.name for m in contact_service.list_messages(limit=1, offset=1)] == ["B"]


def test_update_status(contact_service, fake_supabase):
    saved = contact_service.submit_message(message())

    updated = contact_service.update_status(saved.id, "replied")

    assert updated.status == "replied"
    assert updated.updated_at is not None
    with pytest.raises(HTTPException) as exc_info:
        contact_service.update_status("missing", "read")
    assert exc_info.value.status_code == 404
