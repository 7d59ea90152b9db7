"""
tests/test_api_auth.py -- Integration tests for the /api/v1 auth and user routes.

Runs the real FastAPI app (routes, dependencies, exception handlers) over
isolated in-memory stores via the client fixture.

Coverage:
  - Register -> activate -> login round trip, cookies and response shapes
  - Error envelope: {success: false, message, stack?} with stack dev-only
  - Guards: 401 without a session, refresh recovers an expired access token
  - Admin routes: 403 for non-admins before the handler runs
  - Logout is idempotent and clears both cookies
  - Health endpoint needs no authentication
  - Passwords over bcrypt's 72-byte limit are a 400, not a 500
  - Production without REDIS_URL logs a warning
"""

from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from api.main import _build_session_cache
from cache.store import MemorySessionCache

PASSWORD = "correct-horse-battery"


def _set_cookies(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


def _cookie_header(resp, name: str) -> str:
    matches = [h for h in _set_cookies(resp) if h.startswith(f"{name}=")]
    assert matches, f"no Set-Cookie for {name}"
    return matches[-1]


def _login(client: TestClient, email: str = "ada@example.com", password: str = PASSWORD):
    return client.post("/api/v1/user/login", json={"email": email, "password": password})


class TestRegistrationFlow:
    def test_register_activate_login(self, client: TestClient, mailer) -> None:
        resp = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert "ada@example.com" in body["message"]
        assert "activation_code" not in body

        resp = client.post(
            "/api/v1/user/activate",
            json={"activation_token": body["activation_token"], "activation_code": mailer.last_code},
        )
        assert resp.status_code == 201
        assert resp.json()["success"] is True

        resp = _login(client)
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "ada@example.com"

    def test_register_can_echo_code(self, client: TestClient, settings, mailer) -> None:
        client.app.state.settings = settings.model_copy(update={"expose_activation_code": True})
        resp = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD},
        )
        assert resp.json()["activation_code"] == mailer.last_code

    def test_wrong_code_is_400(self, client: TestClient, mailer) -> None:
        token = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD},
        ).json()["activation_token"]
        wrong = "000000" if mailer.last_code != "000000" else "111111"
        resp = client.post("/api/v1/user/activate", json={"activation_token": token, "activation_code": wrong})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_duplicate_email_is_400(self, client: TestClient, new_user) -> None:
        new_user("ada@example.com")
        resp = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email already exists."

    def test_failed_email_is_502_and_creates_nothing(self, client: TestClient, mailer, user_store) -> None:
        mailer.fail = True
        resp = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 502
        assert user_store.find_by_email("ada@example.com") is None

    def test_over_long_multibyte_password_is_400(self, client: TestClient, mailer) -> None:
        resp = client.post(
            "/api/v1/user/register",
            json={"name": "Ada", "email": "ada@example.com", "password": "é" * 40},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert "72 bytes" in body["message"]
        assert mailer.sent == []


    def test_invalid_body_is_400_envelope(self, client: TestClient) -> None:
        resp = client.post("/api/v1/user/register", json={"name": "Ada", "email": "not-an-email", "password": PASSWORD})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert "email" in body["message"]


class TestLogin:
    def test_login_sets_both_cookies(self, client: TestClient, new_user, settings) -> None:
        new_user("ada@example.com")
        resp = _login(client)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"

        access = _cookie_header(resp, "access_token").lower()
        refresh = _cookie_header(resp, "refresh_token").lower()
        assert f"max-age={settings.access_token_ttl_seconds}" in access
        assert f"max-age={settings.refresh_token_ttl_seconds}" in refresh
        assert "httponly" in access and "httponly" in refresh
        assert "samesite=lax" in access

    def test_user_object_has_no_password(self, client: TestClient, new_user) -> None:
        new_user("ada@example.com")
        body = _login(client).json()
        assert body["success"] is True
        assert body["access_token"]
        assert "hashed_password" not in body["user"]
        assert "password" not in body["user"]

    def test_bad_credentials_uniform_401(self, client: TestClient, new_user) -> None:
        new_user("ada@example.com")
        unknown = _login(client, email="nobody@example.com")
        wrong = _login(client, password="wrong-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json()["message"] == wrong.json()["message"] == "Invalid email or password."

    def test_stack_only_outside_production(self, client: TestClient, settings) -> None:
        dev = _login(client, email="nobody@example.com").json()
        assert dev["stack"]

        client.app.state.settings = settings.model_copy(update={"environment": "production"})
        prod = _login(client, email="nobody@example.com").json()
        assert prod == {"success": False, "message": "Invalid email or password."}

    def test_social_auth_creates_then_reuses(self, client: TestClient) -> None:
        payload = {"email": "sam@example.com", "name": "Sam"}
        first = client.post("/api/v1/user/social-auth", json=payload)
        second = client.post("/api/v1/user/social-auth", json=payload)
        assert first.status_code == second.status_code == 200
        assert first.json()["user"]["id"] == second.json()["user"]["id"]
        _cookie_header(first, "refresh_token")


class TestSession:
    def test_me_requires_login(self, client: TestClient) -> None:
        resp = client.get("/api/v1/user/me")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Please login to access this resource."

    def test_me_reports_cache_source(self, client: TestClient, new_user, session_cache) -> None:
        user = new_user("ada@example.com")
        _login(client)
        body = client.get("/api/v1/user/me").json()
        assert body["user"]["id"] == user.id
        assert body["source"] == "cache"

        session_cache.delete(user.id)
        assert client.get("/api/v1/user/me").json()["source"] == "directory"

    def test_bearer_header_accepted(self, client: TestClient, new_user, token_codec) -> None:
        user = new_user()
        client.cookies.clear()
        resp = client.get("/api/v1/user/me", headers={"Authorization": f"Bearer {token_codec.issue_access(user.id)}"})
        assert resp.status_code == 200

    def test_refresh_issues_access_cookie(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user(), access=False)
        resp = client.get("/api/v1/user/refresh")
        assert resp.status_code == 200
        assert resp.json()["access_token"]
        _cookie_header(resp, "access_token")

    def test_refresh_without_cookie(self, client: TestClient) -> None:
        resp = client.get("/api/v1/user/refresh")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_update_info_slides_expired_access(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user(), access=False)
        resp = client.put("/api/v1/user/update-user-info", json={"name": "Countess Ada"})
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Countess Ada"
        _cookie_header(resp, "access_token")

    def test_update_password_wrong_old(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user())
        resp = client.put(
            "/api/v1/user/update-user-password",
            json={"old_password": "nope", "new_password": "another-pass"},
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Old password is incorrect."

    def test_update_password_over_72_bytes_is_400(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user())
        resp = client.put(
            "/api/v1/user/update-user-password",
            json={"old_password": PASSWORD, "new_password": "密" * 30},
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert _login(client).status_code == 200

    def test_update_avatar(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user())
        resp = client.put("/api/v1/user/update-user-avatar", json={"avatar": "avatars/ada.png"})
        assert resp.json()["user"]["avatar"] == "avatars/ada.png"

    def test_logout_twice(self, client: TestClient, new_user, session_cache) -> None:
        user = new_user("ada@example.com")
        _login(client)
        first = client.post("/api/v1/user/logout")
        assert first.status_code == 200
        assert "max-age=0" in _cookie_header(first, "access_token").lower()
        assert "max-age=0" in _cookie_header(first, "refresh_token").lower()
        assert session_cache.get(user.id) is None

        second = client.post("/api/v1/user/logout")
        assert second.status_code == 200
        assert second.json()["success"] is True


class TestAdminRoutes:
    def test_non_admin_forbidden_before_handler(self, client: TestClient, new_user, login_as, user_store) -> None:
        victim = new_user("victim@example.com")
        login_as(new_user("ada@example.com"))
        resp = client.delete(f"/api/v1/user/delete-user/{victim.id}")
        assert resp.status_code == 403
        assert resp.json()["message"] == "Role: user is not allowed to access this resource."
        assert user_store.find_by_id(victim.id) is not None

    def test_admin_lists_users(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user("root@example.com", role="admin"))
        new_user("ada@example.com")
        resp = client.get("/api/v1/user/get-users")
        assert resp.status_code == 200
        assert {u["email"] for u in resp.json()["users"]} == {"root@example.com", "ada@example.com"}

    def test_admin_updates_role(self, client: TestClient, new_user, login_as) -> None:
        login_as(new_user("root@example.com", role="admin"))
        ada = new_user("ada@example.com")
        resp = client.put("/api/v1/user/update-user-role", json={"id": ada.id, "role": "admin"})
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "admin"

    def test_deleted_user_token_gets_404(self, client: TestClient, new_user, login_as) -> None:
        ada = new_user("ada@example.com")
        login_as(new_user("root@example.com", role="admin"))
        assert client.delete(f"/api/v1/user/delete-user/{ada.id}").status_code == 200

        login_as(ada)
        resp = client.get("/api/v1/user/me")
        assert resp.status_code == 404
        assert resp.json()["message"] == "User not found."


def test_health_no_auth_required(client: TestClient) -> None:
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["components"] == {"app": "ok", "database": "ok", "cache": "ok"}


class TestSessionCacheSelection:
    def test_production_without_redis_warns(self, settings, caplog) -> None:
        production = settings.model_copy(update={"environment": "production", "redis_url": ""})
        with caplog.at_level(logging.WARNING, logger="coursegate.api"):
            cache = _build_session_cache(production)
        assert isinstance(cache, MemorySessionCache)
        assert any(r.levelno == logging.WARNING and "REDIS_URL" in r.getMessage() for r in caplog.records)

    def test_development_without_redis_is_quiet(self, settings, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="coursegate.api"):
            cache = _build_session_cache(settings)
        assert isinstance(cache, MemorySessionCache)
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
