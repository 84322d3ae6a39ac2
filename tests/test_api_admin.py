"""
tests/test_api_admin.py -- Integration tests for the /api/v1/admin routes.

Coverage:
  - Gatekeeping: 401 without a session, 403 for user and manager sessions
  - Listing accounts without leaking password hashes
  - Provisioning with and without a password (temporary password shown once)
  - Role changes, including the self-change rule and unknown ids
  - Admin password reset revokes the account's sessions
  - The manager tier of authorize(): user 403, manager and admin 200, no session 401
  - Profile edits by an admin alongside or instead of a role change
"""

from __future__ import annotations

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from auth.dependencies import require_manager
from auth.models import Principal


def _auth(session_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_id}"}


def _login(client: TestClient, email: str, password: str) -> str:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return resp.json()["session_id"]


def _provision(client: TestClient, admin_sid: str, email: str, **fields) -> dict:
    resp = client.post("/api/v1/admin/users", json={"email": email, **fields}, headers=_auth(admin_sid))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestGatekeeping:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/api/v1/admin/users"),
            ("post", "/api/v1/admin/users"),
            ("patch", "/api/v1/admin/users/usr_x"),
            ("post", "/api/v1/admin/users/usr_x/reset-password"),
        ],
    )
    def test_unauthenticated(self, api_client, method: str, path: str) -> None:
        client, _, _ = api_client
        kwargs = {"json": {"role": "user"}} if method == "patch" else {}
        if method == "post" and path.endswith("/users"):
            kwargs = {"json": {"email": "x@example.com"}}
        resp = getattr(client, method)(path, **kwargs)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_user_is_forbidden(self, api_client) -> None:
        client, admin_sid, _ = api_client
        created = _provision(client, admin_sid, "plain-user@example.com", password="plainpass1")
        sid = _login(client, created["principal"]["email"], "plainpass1")
        resp = client.get("/api/v1/admin/users", headers=_auth(sid))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_manager_is_forbidden(self, api_client) -> None:
        client, admin_sid, _ = api_client
        _provision(client, admin_sid, "manager@example.com", password="managerpass1", role="manager")
        sid = _login(client, "manager@example.com", "managerpass1")
        assert client.get("/api/v1/admin/users", headers=_auth(sid)).status_code == 403


class TestListAndProvision:
    def test_list_users(self, api_client) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.get("/api/v1/admin/users", headers=_auth(admin_sid))
        assert resp.status_code == 200
        users = resp.json()
        assert any(u["id"] == admin_id and u["role"] == "admin" for u in users)
        assert all("password_hash" not in u for u in users)

    def test_provision_without_password_returns_temporary_once(self, api_client) -> None:
        client, admin_sid, _ = api_client
        resp = client.post("/api/v1/admin/users", json={"email": "temp@example.com"}, headers=_auth(admin_sid))
        assert resp.status_code == 201
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["principal"]["role"] == "user"
        temporary = data["temporary_password"]
        assert temporary and len(temporary) == 12
        _login(client, "temp@example.com", temporary)

    def test_provision_with_password(self, api_client) -> None:
        client, admin_sid, _ = api_client
        data = _provision(
            client,
            admin_sid,
            "given@example.com",
            password="givenpass1",
            role="manager",
            first_name="Gina",
        )
        assert data["temporary_password"] is None
        assert data["principal"]["role"] == "manager"
        assert data["principal"]["first_name"] == "Gina"
        _login(client, "given@example.com", "givenpass1")

    def test_provision_duplicate(self, api_client) -> None:
        client, admin_sid, _ = api_client
        _provision(client, admin_sid, "twice@example.com")
        resp = client.post("/api/v1/admin/users", json={"email": "Twice@example.com"}, headers=_auth(admin_sid))
        assert resp.status_code == 409

    def test_provision_unknown_role(self, api_client) -> None:
        client, admin_sid, _ = api_client
        resp = client.post(
            "/api/v1/admin/users",
            json={"email": "badrole@example.com", "role": "superuser"},
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 422


class TestRoleChange:
    def test_promote_takes_effect_on_next_request(self, api_client) -> None:
        client, admin_sid, _ = api_client
        created = _provision(client, admin_sid, "promote@example.com", password="promotepass1")
        user_sid = _login(client, "promote@example.com", "promotepass1")

        resp = client.patch(
            f"/api/v1/admin/users/{created['principal']['id']}",
            json={"role": "Manager"},
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "manager"
        assert client.get("/api/v1/auth/me", headers=_auth(user_sid)).json()["role"] == "manager"

    def test_admin_cannot_change_own_role(self, api_client) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.patch(f"/api/v1/admin/users/{admin_id}", json={"role": "user"}, headers=_auth(admin_sid))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "policy_violation"
        assert client.get("/api/v1/auth/me", headers=_auth(admin_sid)).json()["role"] == "admin"

    def test_unknown_principal(self, api_client) -> None:
        client, admin_sid, _ = api_client
        resp = client.patch("/api/v1/admin/users/usr_missing", json={"role": "user"}, headers=_auth(admin_sid))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_extra_fields_rejected(self, api_client) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.patch(
            f"/api/v1/admin/users/{admin_id}",
            json={"role": "admin", "email": "new@example.com"},
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 422

    def test_edit_names_only(self, api_client) -> None:
        client, admin_sid, _ = api_client
        created = _provision(client, admin_sid, "rename@example.com", first_name="Ren")
        resp = client.patch(
            f"/api/v1/admin/users/{created['principal']['id']}",
            json={"first_name": "Renée", "last_name": "Amé"},
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert (data["first_name"], data["last_name"]) == ("Renée", "Amé")
        assert data["role"] == "user"

    def test_refused_self_role_change_keeps_names(self, api_client) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.patch(
            f"/api/v1/admin/users/{admin_id}",
            json={"role": "manager", "first_name": "Root"},
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 400
        assert client.get("/api/v1/auth/me", headers=_auth(admin_sid)).json()["first_name"] is None

    def test_empty_patch_rejected(self, api_client) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.patch(f"/api/v1/admin/users/{admin_id}", json={}, headers=_auth(admin_sid))
        assert resp.status_code == 422


class TestAdminPasswordReset:
    def test_reset_revokes_sessions_and_issues_temporary(self, api_client) -> None:
        client, admin_sid, _ = api_client
        created = _provision(client, admin_sid, "forgetful@example.com", password="forgetful1")
        user_sid = _login(client, "forgetful@example.com", "forgetful1")

        resp = client.post(
            f"/api/v1/admin/users/{created['principal']['id']}/reset-password",
            headers=_auth(admin_sid),
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        temporary = resp.json()["temporary_password"]

        assert client.get("/api/v1/auth/me", headers=_auth(user_sid)).status_code == 401
        old = client.post("/api/v1/auth/login", json={"email": "forgetful@example.com", "password": "forgetful1"})
        assert old.status_code == 401
        _login(client, "forgetful@example.com", temporary)

    def test_reset_unknown_principal(self, api_client) -> None:
        client, admin_sid, _ = api_client
        resp = client.post("/api/v1/admin/users/usr_missing/reset-password", headers=_auth(admin_sid))
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Manager tier through the HTTP stack
# ---------------------------------------------------------------------------

_MANAGER_AREA = "/api/v1/manager-area"


@pytest.fixture
def manager_area(api_client):
    """Mount a route gated by require_manager for the duration of one test."""
    client, _, _ = api_client

    def manager_only(principal: Principal = Depends(require_manager)):
        return {"id": principal.id, "role": principal.role.value}

    client.app.add_api_route(_MANAGER_AREA, manager_only, methods=["GET"])
    yield _MANAGER_AREA
    client.app.router.routes[:] = [r for r in client.app.router.routes if getattr(r, "path", None) != _MANAGER_AREA]


class TestManagerTier:
    def test_no_session_is_unauthenticated(self, api_client, manager_area) -> None:
        client, _, _ = api_client
        resp = client.get(manager_area)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_user_is_forbidden(self, api_client, manager_area) -> None:
        client, admin_sid, _ = api_client
        _provision(client, admin_sid, "tier-user@example.com", password="tieruser12")
        sid = _login(client, "tier-user@example.com", "tieruser12")
        resp = client.get(manager_area, headers=_auth(sid))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_manager_is_admitted(self, api_client, manager_area) -> None:
        client, admin_sid, _ = api_client
        _provision(client, admin_sid, "tier-manager@example.com", password="tiermanager1", role="manager")
        sid = _login(client, "tier-manager@example.com", "tiermanager1")
        resp = client.get(manager_area, headers=_auth(sid))
        assert resp.status_code == 200
        assert resp.json()["role"] == "manager"

    def test_admin_is_admitted(self, api_client, manager_area) -> None:
        client, admin_sid, admin_id = api_client
        resp = client.get(manager_area, headers=_auth(admin_sid))
        assert resp.status_code == 200
        assert resp.json() == {"id": admin_id, "role": "admin"}

    def test_promotion_opens_the_gate(self, api_client, manager_area) -> None:
        client, admin_sid, _ = api_client
        created = _provision(client, admin_sid, "tier-promoted@example.com", password="tierpromo12")
        sid = _login(client, "tier-promoted@example.com", "tierpromo12")
        assert client.get(manager_area, headers=_auth(sid)).status_code == 403
        client.patch(
            f"/api/v1/admin/users/{created['principal']['id']}",
            json={"role": "manager"},
            headers=_auth(admin_sid),
        )
        assert client.get(manager_area, headers=_auth(sid)).status_code == 200
