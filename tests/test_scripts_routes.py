"""
tests/test_scripts_routes.py -- Integration tests for scripts and favorites.

Coverage:
  - public listing, detail, search, featured; unapproved scripts hidden
  - upload requires a session and records ownership + activity
  - edit/delete: owner allowed, other users 403, moderators allowed;
    featuredRank / isApproved moderator-only
  - view / copy counters
  - favorites: status, idempotent add/remove, per-user lists
"""

from __future__ import annotations

from conftest import TestStores, create_account, login
from fastapi.testclient import TestClient

from auth.models import Role
from market.models import Script

NEW_SCRIPT = {
    "title": "Infinite Jump",
    "description": "Jump in mid-air",
    "code": "print('jump')",
    "imageUrl": "https://img/jump.png",
    "gameType": "Universal",
}


def _seed(stores: TestStores, title: str, **kwargs) -> int:
    return stores.market_store.create_script(
        Script(title=title, description=f"{title} desc", code="c", image_url="https://img/x.png", **kwargs)
    )


def _as_user(client: TestClient, stores: TestStores, username: str = "alice", role: Role = Role.user):
    user = create_account(stores.user_store, username, role=role)
    login(client, username)
    return user


class TestCatalogue:
    def test_list_and_detail(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "Fly", game_type="Obby")
        _seed(stores, "Hidden", is_approved=False)
        listing = client.get("/api/scripts")
        assert listing.status_code == 200
        assert [s["title"] for s in listing.json()] == ["Fly"]

        detail = client.get(f"/api/scripts/{script_id}").json()
        assert detail["gameType"] == "Obby"
        assert detail["imageUrl"] == "https://img/x.png"
        assert detail["views"] == 0

    def test_unapproved_detail_is_404_for_strangers(self, client: TestClient, stores: TestStores) -> None:
        hidden = _seed(stores, "Hidden", is_approved=False)
        assert client.get(f"/api/scripts/{hidden}").status_code == 404

    def test_unapproved_visible_to_owner(self, client: TestClient, stores: TestStores) -> None:
        owner = _as_user(client, stores)
        hidden = _seed(stores, "Hidden", is_approved=False, user_id=owner.id)
        assert client.get(f"/api/scripts/{hidden}").status_code == 200

    def test_missing(self, client: TestClient) -> None:
        resp = client.get("/api/scripts/9999")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_search(self, client: TestClient, stores: TestStores) -> None:
        _seed(stores, "Infinite Jump")
        _seed(stores, "Auto Farm")
        resp = client.get("/api/scripts/search", params={"q": "jump"})
        assert [s["title"] for s in resp.json()] == ["Infinite Jump"]

    def test_featured(self, client: TestClient, stores: TestStores) -> None:
        _seed(stores, "B", featured_rank=2)
        _seed(stores, "A", featured_rank=1)
        _seed(stores, "C")
        resp = client.get("/api/scripts/featured", params={"limit": 5})
        assert [s["title"] for s in resp.json()] == ["A", "B"]
        assert client.get("/api/scripts/featured", params={"limit": 0}).status_code == 400


class TestUpload:
    def test_requires_session(self, client: TestClient) -> None:
        assert client.post("/api/scripts", json=NEW_SCRIPT).status_code == 401

    def test_create(self, client: TestClient, stores: TestStores) -> None:
        user = _as_user(client, stores)
        resp = client.post("/api/scripts", json=NEW_SCRIPT)
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["userId"] == user.id
        assert body["title"] == "Infinite Jump"
        mine = client.get("/api/user/scripts").json()
        assert [s["id"] for s in mine] == [body["id"]]
        actions = [a.action for a in stores.market_store.latest_activities()]
        assert "create_script" in actions

    def test_validation(self, client: TestClient, stores: TestStores) -> None:
        _as_user(client, stores)
        resp = client.post("/api/scripts", json={**NEW_SCRIPT, "title": ""})
        assert resp.status_code == 400


class TestEditAndDelete:
    def test_owner_edits(self, client: TestClient, stores: TestStores) -> None:
        owner = _as_user(client, stores)
        script_id = _seed(stores, "Old", user_id=owner.id)
        resp = client.patch(f"/api/scripts/{script_id}", json={"title": "New", "gameLink": None})
        assert resp.status_code == 200
        assert resp.json()["title"] == "New"

    def test_other_user_forbidden(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "Theirs", user_id=12345)
        _as_user(client, stores)
        assert client.patch(f"/api/scripts/{script_id}", json={"title": "Mine"}).status_code == 403
        assert client.delete(f"/api/scripts/{script_id}").status_code == 403

    def test_owner_cannot_feature(self, client: TestClient, stores: TestStores) -> None:
        owner = _as_user(client, stores)
        script_id = _seed(stores, "Mine", user_id=owner.id)
        assert client.patch(f"/api/scripts/{script_id}", json={"featuredRank": 1}).status_code == 403
        assert stores.market_store.get_script(script_id).featured_rank is None

    def test_moderator_features_and_unapproves(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "Any", user_id=12345)
        _as_user(client, stores, "mod", Role.moderator)
        resp = client.patch(f"/api/scripts/{script_id}", json={"featuredRank": 1, "isApproved": False})
        assert resp.status_code == 200
        assert resp.json()["featuredRank"] == 1
        assert resp.json()["isApproved"] is False

    def test_owner_deletes(self, client: TestClient, stores: TestStores) -> None:
        owner = _as_user(client, stores)
        script_id = _seed(stores, "Mine", user_id=owner.id)
        assert client.delete(f"/api/scripts/{script_id}").status_code == 200
        assert stores.market_store.get_script(script_id) is None

    def test_moderator_deletes(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "Any", user_id=12345)
        _as_user(client, stores, "mod", Role.moderator)
        assert client.delete(f"/api/scripts/{script_id}").status_code == 200


class TestCounters:
    def test_view_and_copy(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "A")
        client.post(f"/api/scripts/{script_id}/view")
        resp = client.post(f"/api/scripts/{script_id}/copy")
        assert resp.json()["views"] == 1
        assert resp.json()["copies"] == 1

    def test_missing_script(self, client: TestClient) -> None:
        assert client.post("/api/scripts/9999/view").status_code == 404


class TestFavorites:
    def test_favorite_flow(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "A")
        _as_user(client, stores)
        url = f"/api/scripts/{script_id}/favorite"
        assert client.get(url).json() == {"scriptId": script_id, "isFavorite": False}
        assert client.post(url).json()["isFavorite"] is True
        assert client.post(url).status_code == 200
        assert [s["id"] for s in client.get("/api/user/favorites").json()] == [script_id]
        assert client.delete(url).json()["isFavorite"] is False
        assert client.delete(url).status_code == 200
        assert client.get("/api/user/favorites").json() == []

    def test_requires_session(self, client: TestClient, stores: TestStores) -> None:
        script_id = _seed(stores, "A")
        assert client.post(f"/api/scripts/{script_id}/favorite").status_code == 401
        assert client.get("/api/user/favorites").status_code == 401

    def test_missing_script(self, client: TestClient, stores: TestStores) -> None:
        _as_user(client, stores)
        assert client.post("/api/scripts/9999/favorite").status_code == 404
