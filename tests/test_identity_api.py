from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from identity_core import main as app_main
from identity_core.infra import db


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_api_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()
    test_engine.dispose()


def _headers(user_id: str, tenant_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-Tenant-Id": tenant_id}


def _setup(client: TestClient, suffix: str = "a") -> dict[str, str]:
    response = client.post(
        "/api/identity/setup",
        json={
            "landlord_name": f"landlord-{suffix}",
            "tenant_name": f"tenant-{suffix}",
            "admin_name": f"Admin {suffix}",
            "admin_email": f"admin-{suffix}@example.com",
        },
    )
    assert response.status_code == 201
    return response.json()


def _admin(client: TestClient, suffix: str = "a") -> tuple[dict[str, str], dict[str, str]]:
    setup = _setup(client, suffix)
    return setup, _headers(setup["user_id"], setup["tenant_id"])


def _create(client: TestClient, path: str, payload: dict, headers: dict[str, str]) -> dict:
    response = client.post(path, json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_setup_grants_identity_administration(identity_client: TestClient) -> None:
    setup, headers = _admin(identity_client)

    response = identity_client.get("/api/identity/me/permissions", headers=headers)

    assert response.status_code == 200
    assert response.json() == sorted(setup["permissions"])
    duplicate = identity_client.post(
        "/api/identity/setup",
        json={
            "landlord_name": "landlord-a",
            "tenant_name": "tenant-z",
            "admin_name": "Admin",
            "admin_email": "z@example.com",
        },
    )
    assert duplicate.status_code == 409


def test_identity_headers_and_permissions_are_enforced(identity_client: TestClient) -> None:
    setup, headers = _admin(identity_client)

    assert identity_client.get("/api/identity/roles").status_code == 401
    outsider = _create(identity_client, "/api/identity/users", {"name": "Bo", "email": "bo@example.com"}, headers)
    forbidden = identity_client.get("/api/identity/roles", headers=_headers(outsider["id"], setup["tenant_id"]))
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Missing permission: read:identity"


def test_role_assignment_flow_over_http(identity_client: TestClient) -> None:
    setup, headers = _admin(identity_client)
    read = _create(identity_client, "/api/identity/permissions", {"action": "read", "resource": "members"}, headers)
    update = _create(
        identity_client,
        "/api/identity/permissions",
        {"action": "update", "resource": "members"},
        headers,
    )
    viewer = _create(identity_client, "/api/identity/roles", {"code": "viewer", "name": "Viewer"}, headers)
    editor = _create(identity_client, "/api/identity/roles", {"code": "editor", "name": "Editor"}, headers)
    for role, permissions in ((viewer, [read]), (editor, [read, update])):
        for permission in permissions:
            _create(
                identity_client,
                f"/api/identity/roles/{role['id']}/permissions",
                {"permission_id": permission["id"]},
                headers,
            )
    user = _create(identity_client, "/api/identity/users", {"name": "Cy", "email": "cy@example.com"}, headers)

    first = identity_client.post(
        f"/api/identity/users/{user['id']}/roles",
        json={"role_ids": [viewer["id"]]},
        headers=headers,
    )
    assert first.status_code == 200
    second = identity_client.post(
        f"/api/identity/users/{user['id']}/roles",
        json={"role_ids": [viewer["id"], editor["id"], None]},
        headers=headers,
    )
    assert second.status_code == 200
    body = second.json()
    assert body["newly_assigned_role_ids"] == [editor["id"]]
    assert body["already_assigned_role_ids"] == [viewer["id"]]
    assert body["newly_assigned_permission_ids"] == [update["id"]]
    assert body["already_assigned_permission_ids"] == [read["id"]]

    roles = identity_client.get(f"/api/identity/users/{user['id']}/roles", headers=headers)
    assert sorted(item["role_code"] for item in roles.json()) == ["editor", "viewer"]
    permissions = identity_client.get(f"/api/identity/users/{user['id']}/permissions", headers=headers)
    assert [item["permission_string"] for item in permissions.json()] == ["read:members", "update:members"]

    decision = identity_client.post(
        "/api/identity/authorize",
        json={"action": "update", "resource": "members"},
        headers=_headers(user["id"], setup["tenant_id"]),
    )
    assert decision.status_code == 200
    assert decision.json()["allowed"] is True

    removed = identity_client.delete(f"/api/identity/users/{user['id']}/roles/{editor['id']}", headers=headers)
    assert removed.status_code == 204
    missing = identity_client.delete(f"/api/identity/users/{user['id']}/roles/{editor['id']}", headers=headers)
    assert missing.status_code == 404


def test_assignment_errors_map_to_status_codes(identity_client: TestClient) -> None:
    setup, headers = _admin(identity_client, "a")
    other_setup, _ = _admin(identity_client, "b")
    user_id = setup["user_id"]

    empty = identity_client.post(
        f"/api/identity/users/{user_id}/roles",
        json={"role_ids": [None]},
        headers=headers,
    )
    assert empty.status_code == 422
    unknown = identity_client.post(
        f"/api/identity/users/{user_id}/roles",
        json={"role_ids": ["missing-role"]},
        headers=headers,
    )
    assert unknown.status_code == 404
    foreign = identity_client.post(
        f"/api/identity/users/{user_id}/roles",
        json={"role_ids": [other_setup["role_id"]]},
        headers=headers,
    )
    assert foreign.status_code == 422
    assert "does not belong" in foreign.json()["detail"]


def test_resources_of_other_landlords_are_hidden(identity_client: TestClient) -> None:
    _, headers = _admin(identity_client, "a")
    other_setup, _ = _admin(identity_client, "b")

    assert identity_client.get(f"/api/identity/roles/{other_setup['role_id']}", headers=headers).status_code == 404
    assert identity_client.get(f"/api/identity/tenants/{other_setup['tenant_id']}", headers=headers).status_code == 404
    roles = identity_client.get("/api/identity/roles", headers=headers)
    assert [item["code"] for item in roles.json()] == ["admin"]


def test_tenant_and_policy_routes(identity_client: TestClient) -> None:
    setup, headers = _admin(identity_client)

    tenant = _create(identity_client, "/api/identity/tenants", {"name": "tenant-extra"}, headers)
    deactivated = identity_client.patch(
        f"/api/identity/tenants/{tenant['id']}",
        json={"is_active": False},
        headers=headers,
    )
    assert deactivated.json()["is_active"] is False
    assert identity_client.post("/api/identity/tenants", json={"name": "t"}, headers=headers).status_code == 422
    assert identity_client.post("/api/identity/tenants", json={"name": "tenant-extra"}, headers=headers).status_code == 409
    assert identity_client.delete(f"/api/identity/tenants/{setup['tenant_id']}", headers=headers).status_code == 409
    assert identity_client.delete(f"/api/identity/tenants/{tenant['id']}", headers=headers).status_code == 204

    presets = identity_client.get("/api/identity/policy-presets", headers=headers)
    assert presets.status_code == 200
    assert any(item["key"] == "security-access" for item in presets.json())
    policy = _create(
        identity_client,
        "/api/identity/policies:from-preset",
        {"preset_key": "read-only-access", "code": "ro"},
        headers,
    )
    assert policy["effect"] == "DENY"
    denied = identity_client.get("/api/identity/policies", params={"effect": "DENY"}, headers=headers)
    assert [item["code"] for item in denied.json()] == ["ro"]

    permission = _create(
        identity_client,
        "/api/identity/permissions",
        {"action": "delete", "resource": "members"},
        headers,
    )
    default = identity_client.put(
        f"/api/identity/permissions/{permission['id']}/default-policy",
        json={"policy_id": policy["id"]},
        headers=headers,
    )
    assert default.status_code == 200
    assert default.json()["policy_id"] == policy["id"]
    assert identity_client.delete(f"/api/identity/policies/{policy['id']}", headers=headers).status_code == 204
    refreshed = identity_client.get(f"/api/identity/permissions/{permission['id']}", headers=headers)
    assert refreshed.json()["policy_id"] is None
