"""
tests/test_auth_routes.py -- Integration tests for account and session routes.

These tests exercise the full stack: FastAPI routing -> session cookie ->
SessionManager -> UserStore -> response model serialization.

Coverage:
  - register: 201 + cookie, camelCase body without password, duplicate 400,
    6-char password accepted and 5-char rejected, missing fields 400
  - login: 200 + cookie, wrong password / unknown user both generic 401 with
    no cookie, banned user 401, session rotation, 429 once LOGIN_RATE_LIMIT
    is exhausted
  - logout: clears the session, second logout still 200
  - /user: 401 without session, reflects a role change on the next request,
    stops resolving once the user is banned or deleted
  - profile and change-password
  - admin create-user: 401 without a session, 403 for users, 201 for
    admins, isAdmin and role
"""

from __future__ import annotations

from conftest import TestStores, create_account, login
from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.credentials import authenticate_user
from auth.models import Role
from core.config import get_settings

COOKIE = get_settings().session_cookie_name


def _register(client: TestClient, username: str = "alice", password: str = "secret1", **extra):
    return client.post("/api/register", json={"username": username, "password": password, **extra})


class TestRegister:
    def test_register_then_fetch_user(self, client: TestClient) -> None:
        """Register alice -> 201 with cookie -> GET /user -> 200 with role user."""
        resp = _register(client)
        assert resp.status_code == 201, resp.text
        assert COOKIE in resp.cookies
        body = resp.json()["user"]
        assert body["username"] == "alice"
        assert body["role"] == "user"
        assert "password" not in body and "hashedPassword" not in body

        me = client.get("/api/user")
        assert me.status_code == 200
        assert me.json()["user"]["username"] == "alice"
        assert me.json()["user"]["role"] == "user"

    def test_camel_case_fields(self, client: TestClient) -> None:
        user = _register(client, email="alice@example.com").json()["user"]
        for key in ("avatarUrl", "discordUsername", "createdAt", "isAdmin", "isBanned"):
            assert key in user
        assert user["email"] == "alice@example.com"
        assert user["isAdmin"] is False

    def test_cookie_attributes(self, client: TestClient) -> None:
        header = _register(client).headers["set-cookie"].lower()
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "max-age=604800" in header

    def test_duplicate_username(self, client: TestClient) -> None:
        _register(client)
        client.cookies.clear()
        resp = _register(client, password="another1")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Username already exists"

    def test_six_character_password_accepted(self, client: TestClient) -> None:
        assert _register(client, password="abcdef").status_code == 201

    def test_five_character_password_rejected(self, client: TestClient, stores: TestStores) -> None:
        resp = _register(client, password="abcde")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"
        assert stores.user_store.get_by_username("alice") is None

    def test_missing_fields(self, client: TestClient) -> None:
        resp = client.post("/api/register", json={"username": "alice"})
        assert resp.status_code == 400
        assert "password" in resp.json()["error"]["message"]

    def test_logs_activity(self, client: TestClient, stores: TestStores) -> None:
        _register(client)
        assert [a.action for a in stores.market_store.latest_activities()] == ["register"]


class TestLogin:
    def test_success(self, client: TestClient, stores: TestStores) -> None:
        create_account(stores.user_store, "alice")
        resp = login(client, "alice")
        assert resp.status_code == 200
        assert COOKIE in resp.cookies
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["user"]["lastLoginAt"] is not None

    def test_wrong_password_is_generic_401_without_cookie(self, client: TestClient, stores: TestStores) -> None:
        create_account(stores.user_store, "alice")
        resp = login(client, "alice", "wrongpw")
        assert resp.status_code == 401
        assert COOKIE not in resp.cookies
        assert "set-cookie" not in resp.headers
        unknown = login(client, "nobody", "wrongpw")
        assert unknown.status_code == 401
        assert unknown.json() == resp.json()

    def test_banned_user_cannot_login(self, client: TestClient, stores: TestStores) -> None:
        user = create_account(stores.user_store, "alice")
        stores.user_store.ban_user(user.id, "spam")
        assert login(client, "alice").status_code == 401

    def test_login_rotates_session(self, client: TestClient, stores: TestStores) -> None:
        create_account(stores.user_store, "alice")
        first = login(client, "alice").cookies[COOKIE]
        second = login(client, "alice").cookies[COOKIE]
        assert first != second
        assert stores.session_manager.resolve(first) is None
        assert stores.session_manager.resolve(second) is not None

    def test_rate_limited_after_limit(self, client: TestClient, monkeypatch) -> None:
        limited = get_settings().model_copy(update={"login_rate_limit": "3/minute"})
        monkeypatch.setattr("api.routes.auth.get_settings", lambda: limited)
        limiter.reset()
        try:
            responses = [login(client, "nobody", "wrongpw") for _ in range(5)]
        finally:
            limiter.reset()
        assert [r.status_code for r in responses] == [401, 401, 401, 429, 429]
        blocked = responses[-1]
        assert blocked.json()["error"]["code"] == "rate_limited"
        assert int(blocked.headers["retry-after"]) > 0


class TestLogout:
    def test_logout_ends_session(self, client: TestClient) -> None:
        _register(client)
        token = client.cookies.get(COOKIE)
        resp = client.post("/api/logout")
        assert resp.status_code == 200
        assert client.get("/api/user").status_code == 401
        # The old token is dead server-side even if a client replays it.
        client.cookies.set(COOKIE, token)
        assert client.get("/api/user").status_code == 401

    def test_double_logout(self, client: TestClient) -> None:
        _register(client)
        assert client.post("/api/logout").status_code == 200
        assert client.post("/api/logout").status_code == 200

    def test_logout_without_session(self, client: TestClient) -> None:
        assert client.post("/api/logout").status_code == 200


class TestCurrentUser:
    def test_unauthenticated(self, client: TestClient) -> None:
        resp = client.get("/api/user")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_forged_cookie(self, client: TestClient) -> None:
        client.cookies.set(COOKIE, "not-a-real-token")
        assert client.get("/api/user").status_code == 401

    def test_role_change_visible_on_next_request(self, client: TestClient, stores: TestStores) -> None:
        user = _register(client).json()["user"]
        stores.user_store.update_user(user["id"], role=Role.moderator)
        assert client.get("/api/user").json()["user"]["role"] == "moderator"

    def test_ban_ends_existing_session(self, client: TestClient, stores: TestStores) -> None:
        user = _register(client).json()["user"]
        stores.user_store.ban_user(user["id"], "spam")
        assert client.get("/api/user").status_code == 401

    def test_deleted_user_session_stops_resolving(self, client: TestClient, stores: TestStores) -> None:
        user = _register(client).json()["user"]
        stores.user_store.delete_user(user["id"])
        assert client.get("/api/user").status_code == 401


class TestProfile:
    def test_update_profile(self, client: TestClient) -> None:
        _register(client)
        resp = client.put(
            "/api/profile",
            json={"bio": "I make scripts", "discordUsername": "alice#0001", "avatarUrl": "https://img/a.png"},
        )
        assert resp.status_code == 200, resp.text
        user = resp.json()["user"]
        assert user["bio"] == "I make scripts"
        assert user["discordUsername"] == "alice#0001"
        assert user["avatarUrl"] == "https://img/a.png"

    def test_partial_update_keeps_other_fields(self, client: TestClient) -> None:
        _register(client)
        client.put("/api/profile", json={"bio": "first"})
        user = client.put("/api/profile", json={"email": "a@example.com"}).json()["user"]
        assert user["bio"] == "first"
        assert user["email"] == "a@example.com"

    def test_requires_session(self, client: TestClient) -> None:
        assert client.put("/api/profile", json={"bio": "x"}).status_code == 401


class TestChangePassword:
    def test_success(self, client: TestClient, stores: TestStores) -> None:
        _register(client)
        resp = client.put("/api/change-password", json={"currentPassword": "secret1", "newPassword": "newpass1"})
        assert resp.status_code == 200
        assert "message" in resp.json()
        assert authenticate_user(stores.user_store, "alice", "newpass1") is not None
        assert authenticate_user(stores.user_store, "alice", "secret1") is None

    def test_wrong_current_password_leaves_hash(self, client: TestClient, stores: TestStores) -> None:
        _register(client)
        before = stores.user_store.get_by_username("alice").hashed_password
        resp = client.put("/api/change-password", json={"currentPassword": "nope", "newPassword": "newpass1"})
        assert resp.status_code == 400
        assert stores.user_store.get_by_username("alice").hashed_password == before

    def test_new_password_too_short(self, client: TestClient, stores: TestStores) -> None:
        _register(client)
        resp = client.put("/api/change-password", json={"currentPassword": "secret1", "newPassword": "abc"})
        assert resp.status_code == 400
        assert authenticate_user(stores.user_store, "alice", "secret1") is not None


class TestAdminCreateUser:
    def test_user_role_forbidden(self, client: TestClient, stores: TestStores) -> None:
        _register(client)
        resp = client.post("/api/admin/create-user", json={"username": "bob", "password": "abcdef"})
        assert resp.status_code == 403
        assert stores.user_store.get_by_username("bob") is None

    def test_unauthenticated(self, client: TestClient) -> None:
        resp = client.post("/api/admin/create-user", json={"username": "bob", "password": "abcdef"})
        assert resp.status_code == 401

    def test_admin_creates_user(self, admin_client: TestClient, stores: TestStores) -> None:
        resp = admin_client.post(
            "/api/admin/create-user",
            json={"username": "bob", "password": "abcdef", "isAdmin": False},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["message"] == "User created successfully"
        assert body["user"]["role"] == "user"
        assert authenticate_user(stores.user_store, "bob", "abcdef") is not None
        # The admin is still logged in as themselves.
        assert admin_client.get("/api/user").json()["user"]["username"] == "root"

    def test_is_admin_flag(self, admin_client: TestClient) -> None:
        resp = admin_client.post("/api/admin/create-user", json={"username": "boss", "password": "abcdef", "isAdmin": True})
        assert resp.json()["user"]["role"] == "admin"

    def test_explicit_role(self, admin_client: TestClient) -> None:
        resp = admin_client.post("/api/admin/create-user", json={"username": "m", "password": "abcdef", "role": "moderator"})
        assert resp.json()["user"]["role"] == "moderator"

    def test_validation(self, admin_client: TestClient) -> None:
        short = admin_client.post("/api/admin/create-user", json={"username": "bob", "password": "abcde"})
        assert short.status_code == 400
        bad_role = admin_client.post(
            "/api/admin/create-user", json={"username": "bob", "password": "abcdef", "role": "owner"}
        )
        assert bad_role.status_code == 400

    def test_duplicate(self, admin_client: TestClient) -> None:
        resp = admin_client.post("/api/admin/create-user", json={"username": "root", "password": "abcdef"})
        assert resp.status_code == 400
