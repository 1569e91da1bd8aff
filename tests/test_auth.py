import hashlib

import httpx
import pytest
from fastapi import HTTPException

from apkportal.database.local_store import LOCAL_USERS_KEY, REMEMBERED_EMAIL_KEY, SESSIONS_KEY
from apkportal.modules.auth import service as auth_module
from apkportal.modules.auth.schemas import SignInRequest, SignUpRequest
from apkportal.modules.auth.service import hash_password, verify_password


def go_offline(fake_supabase):
    error = httpx.ConnectError("Connection refused")
    fake_supabase.fail("auth:sign_up", error)
    fake_supabase.fail("auth:sign_in_with_password", error)


def cached_session(store, token):
    return (store.get(SESSIONS_KEY) or {}).get(hashlib.sha256(token.encode()).hexdigest())


def test_password_hash_roundtrip():
    record = hash_password("Aa1!aaaa")
    assert "Aa1!aaaa" not in record.values()
    assert verify_password("Aa1!aaaa", record)
    assert not verify_password("wrong", record)
    assert not verify_password("Aa1!aaaa", {})


def test_sign_up_creates_profile_activity_and_caches_session(auth_service, fake_supabase, store):
    response = auth_service.sign_up(SignUpRequest(email="new@example.com", password="Aa1!aaaa", full_name="New User"))

    assert response.offline is False
    assert response.access_token
    assert response.user.name == "New User"
    profile = fake_supabase.rows("profiles")[0]
    assert profile["id"] == response.user.id
    assert profile["full_name"] == "New User"
    assert [a["activity_type"] for a in fake_supabase.rows("user_activities")] == ["signup"]
    assert cached_session(store, response.access_token)["id"] == response.user.id


def test_sign_up_keeps_existing_profile(auth_service, fake_supabase):
    user = fake_supabase.auth.create_user("someone@example.com")
    fake_supabase.seed("profiles", {"id": user.id, "email": user.email, "full_name": "Kept"})

    auth_service.users.ensure_profile(user.id, user.email, "Overwritten?")

    assert fake_supabase.rows("profiles")[0]["full_name"] == "Kept"


def test_sign_up_already_registered_is_409(auth_service, fake_supabase):
    fake_supabase.auth.create_user("taken@example.com")

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_up(SignUpRequest(email="taken@example.com", password="Aa1!aaaa"))

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "This email is already registered. Try signing in instead."


def test_sign_up_password_policy_is_400(auth_service, fake_supabase):
    fake_supabase.fail("auth:sign_up", Exception("Password should be at least 6 characters"))

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_up(SignUpRequest(email="a@b.com", password="a"))
    assert exc_info.value.status_code == 400
    assert "Password" in exc_info.value.detail


def test_sign_up_pending_confirmation(auth_service, fake_supabase):
    fake_supabase.auth.require_confirmation = True

    response = auth_service.sign_up(SignUpRequest(email="confirm@example.com", password="Aa1!aaaa"))

    assert response.access_token is None
    assert "check your email" in response.message


def test_offline_sign_up_creates_local_account(auth_service, fake_supabase, store):
    go_offline(fake_supabase)

    response = auth_service.sign_up(SignUpRequest(email="a@b.com", password="Aa1!aaaa"))

    assert response.offline is True
    assert response.access_token.startswith("local-session-")
    cached = cached_session(store, response.access_token)
    assert cached["id"].startswith("local-")
    assert cached["offline"] is True
    local_users = store.get(LOCAL_USERS_KEY)
    assert [u["email"] for u in local_users] == ["a@b.com"]
    assert "password" not in local_users[0]
    assert local_users[0]["password_hash"]
    assert fake_supabase.rows("user_activities") == []


def test_offline_sign_up_twice_is_409(auth_service, fake_supabase):
    go_offline(fake_supabase)
    auth_service.sign_up(SignUpRequest(email="a@b.com", password="Aa1!aaaa"))

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_up(SignUpRequest(email="A@B.com", password="Aa1!aaaa"))
    assert exc_info.value.status_code == 409


def test_offline_sign_in_checks_local_accounts(auth_service, fake_supabase, store):
    go_offline(fake_supabase)
    created = auth_service.sign_up(SignUpRequest(email="a@b.com", password="Aa1!aaaa"))

    response = auth_service.sign_in(SignInRequest(email="a@b.com", password="Aa1!aaaa"))
    assert response.offline is True
    assert response.user.id == created.user.id
    assert response.access_token != created.access_token
    assert auth_service.get_current_user(response.access_token).id == created.user.id

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_in(SignInRequest(email="a@b.com", password="nope"))
    assert exc_info.value.status_code == 401


def test_sign_in_success_and_remember(auth_service, fake_supabase, store):
    fake_supabase.auth.create_user("member@example.com", password="Aa1!aaaa")

    response = auth_service.sign_in(SignInRequest(email="member@example.com", password="Aa1!aaaa", remember=True))

    assert response.access_token
    assert store.get(REMEMBERED_EMAIL_KEY) == "member@example.com"
    assert auth_service.get_remembered_email() == "member@example.com"
    assert [a["activity_type"] for a in fake_supabase.rows("user_activities")] == ["login"]

    auth_service.sign_in(SignInRequest(email="member@example.com", password="Aa1!aaaa", remember=False))
    assert auth_service.get_remembered_email() is None


def test_sign_in_wrong_password_is_401(auth_service, fake_supabase):
    fake_supabase.auth.create_user("member@example.com", password="Aa1!aaaa")

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_in(SignInRequest(email="member@example.com", password="bad"))
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Invalid email or password. Please try again."


def test_sign_in_unconfirmed_is_403(auth_service, fake_supabase):
    fake_supabase.auth.create_user("pending@example.com", password="Aa1!aaaa", confirmed=False)

    with pytest.raises(HTTPException) as exc_info:
        auth_service.sign_in(SignInRequest(email="pending@example.com", password="Aa1!aaaa"))
    assert exc_info.value.status_code == 403


def sign_in(auth_service, fake_supabase, email):
    fake_supabase.auth.create_user(email, password="Aa1!aaaa")
    return auth_service.sign_in(SignInRequest(email=email, password="Aa1!aaaa"))


def test_sign_out_always_clears_session(auth_service, fake_supabase, store):
    token = sign_in(auth_service, fake_supabase, "u@example.com").access_token
    fake_supabase.fail("auth:sign_out", httpx.ConnectError("Connection refused"))

    assert auth_service.sign_out(token) is True
    assert cached_session(store, token) is None
    assert [a["activity_type"] for a in fake_supabase.rows("user_activities")] == ["login", "logout"]


def test_sign_out_revokes_token(auth_service, fake_supabase, store):
    token = sign_in(auth_service, fake_supabase, "u@example.com").access_token
    assert auth_service.get_current_user(token).email == "u@example.com"

    auth_service.sign_out(token)

    assert ("auth", "sign_out", token) in fake_supabase.calls
    with pytest.raises(HTTPException) as exc_info:
        auth_service.get_current_user(token)
    assert exc_info.value.status_code == 401


def test_sign_out_without_token_leaves_other_sessions_alone(auth_service, fake_supabase, store):
    token = sign_in(auth_service, fake_supabase, "alice@example.com").access_token

    assert auth_service.sign_out() is True

    assert cached_session(store, token)["email"] == "alice@example.com"
    assert [a["activity_type"] for a in fake_supabase.rows("user_activities")] == ["login"]
    assert not any(c[:2] == ("auth", "sign_out") for c in fake_supabase.calls)


def test_get_current_user_comes_from_token_only(auth_service, fake_supabase):
    sign_in(auth_service, fake_supabase, "alice@example.com")
    assert auth_service.get_current_user() is None

    user = fake_supabase.auth.create_user("token@example.com", user_metadata={"full_name": "Token User"})
    current = auth_service.get_current_user(fake_supabase.auth.issue_token(user.id))
    assert current.id == user.id
    assert current.name == "Token User"


def test_get_current_user_uses_cached_session_when_unreachable(auth_service, fake_supabase):
    response = sign_in(auth_service, fake_supabase, "member@example.com")
    fake_supabase.fail("auth:get_user", httpx.ConnectError("Connection refused"))

    assert auth_service.get_current_user(response.access_token).id == response.user.id
    with pytest.raises(HTTPException) as exc_info:
        auth_service.get_current_user("token-never-issued")
    assert exc_info.value.status_code == 503


def test_offline_sessions_are_scoped_to_their_token(auth_service, fake_supabase, store):
    go_offline(fake_supabase)
    alice = auth_service.sign_up(SignUpRequest(email="alice@example.com", password="Aa1!aaaa"))
    bob = auth_service.sign_up(SignUpRequest(email="bob@example.com", password="Aa1!aaaa"))

    assert auth_service.get_current_user(alice.access_token).email == "alice@example.com"
    assert auth_service.get_current_user(bob.access_token).email == "bob@example.com"
    assert auth_service.get_current_user("local-session-forged") is None

    auth_service.sign_out(alice.access_token)

    assert auth_service.get_current_user(alice.access_token) is None
    assert auth_service.get_current_user(bob.access_token).email == "bob@example.com"
    assert fake_supabase.rows("user_activities") == []
    assert not any(c[:2] == ("auth", "sign_out") for c in fake_supabase.calls)


def test_verify_token_caches_and_rejects(auth_service, fake_supabase):
    user = fake_supabase.auth.create_user("member@example.com")
    token = fake_supabase.auth.issue_token(user.id)

    assert auth_service.verify_token(token)["id"] == user.id
    assert auth_service.verify_token(token)["id"] == user.id
    assert sum(1 for c in fake_supabase.calls if c[:2] == ("auth", "get_user")) == 1

    with pytest.raises(HTTPException) as exc_info:
        auth_service.verify_token("garbage")
    assert exc_info.value.status_code == 401


def test_verify_token_network_error_is_503(auth_service, fake_supabase):
    fake_supabase.fail("auth:get_user", httpx.ConnectError("Connection refused"))
    with pytest.raises(HTTPException) as exc_info:
        auth_service.verify_token("any")
    assert exc_info.value.status_code == 503


def test_oauth_url_redirects_to_callback(auth_service):
    response = auth_service.oauth_url("github")
    assert response.provider == "github"
    assert "auth/callback" in response.url


def test_exchange_code(auth_service, fake_supabase, store):
    user = fake_supabase.auth.create_user("oauth@example.com")
    code = fake_supabase.auth.issue_token(user.id)

    response = auth_service.exchange_code(code)

    assert response.user.id == user.id
    assert cached_session(store, response.access_token)["id"] == user.id

    with pytest.raises(HTTPException) as exc_info:
        auth_service.exchange_code("bad-code")
    assert exc_info.value.status_code == 400


def test_set_admin_uses_service_role_client(auth_service, fake_supabase, monkeypatch):
    user = fake_supabase.auth.create_user("staff@example.com")
    monkeypatch.setattr(auth_module.settings, "supabase_service_role_key", "service-key")
    monkeypatch.setattr(auth_module, "create_client", lambda url, key: fake_supabase)

    assert auth_service.set_admin(user.id, True) is True
    assert user.app_metadata == {"type": "super_user"}

    with pytest.raises(HTTPException) as exc_info:
        auth_service.set_admin("missing-user", True)
    assert exc_info.value.status_code == 404


def test_set_admin_without_service_key(auth_service, monkeypatch):
    monkeypatch.setattr(auth_module.settings, "supabase_service_role_key", None)
    with pytest.raises(HTTPException) as exc_info:
        auth_service.set_admin("someone", True)
    assert exc_info.value.status_code == 500
