from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _identity_headers(user_id: str, tenant_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-Tenant-Id": tenant_id}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
        except httpx.HTTPError as exc:
            last_status = f"http_error: {exc}"
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}")


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    run_id = uuid4().hex[:8]

    async with httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(20.0)) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        setup_resp = await client.post(
            "/api/identity/setup",
            json={
                "landlord_name": f"demo-landlord-{run_id}",
                "tenant_name": f"demo-tenant-{run_id}",
                "admin_name": "Demo Admin",
                "admin_email": f"admin-{run_id}@example.com",
            },
        )
        _assert_status(setup_resp, 201)
        setup = setup_resp.json()
        headers = _identity_headers(setup["user_id"], setup["tenant_id"])

        permission_ids: list[str] = []
        for action in ("read", "update"):
            permission_resp = await client.post(
                "/api/identity/permissions",
                json={"action": action, "resource": "members"},
                headers=headers,
            )
            _assert_status(permission_resp, 201)
            permission_ids.append(permission_resp.json()["id"])

        role_resp = await client.post(
            "/api/identity/roles",
            json={"code": "receptionist", "name": "Receptionist"},
            headers=headers,
        )
        _assert_status(role_resp, 201)
        role_id = role_resp.json()["id"]
        for permission_id in permission_ids:
            attach_resp = await client.post(
                f"/api/identity/roles/{role_id}/permissions",
                json={"permission_id": permission_id},
                headers=headers,
            )
            _assert_status(attach_resp, 201)

        user_resp = await client.post(
            "/api/identity/users",
            json={"name": "Front Desk", "email": f"desk-{run_id}@example.com"},
            headers=headers,
        )
        _assert_status(user_resp, 201)
        user_id = user_resp.json()["id"]

        first = await client.post(
            f"/api/identity/users/{user_id}/roles",
            json={"role_ids": [role_id]},
            headers=headers,
        )
        _assert_status(first, 200)
        if first.json()["newly_assigned_role_ids"] != [role_id]:
            raise RuntimeError(f"unexpected first assignment: {first.json()}")

        second = await client.post(
            f"/api/identity/users/{user_id}/roles",
            json={"role_ids": [role_id, role_id, None]},
            headers=headers,
        )
        _assert_status(second, 200)
        if second.json()["already_assigned_role_ids"] != [role_id]:
            raise RuntimeError(f"assignment was not idempotent: {second.json()}")

        decision_resp = await client.post(
            "/api/identity/authorize",
            json={"action": "update", "resource": "members"},
            headers=_identity_headers(user_id, setup["tenant_id"]),
        )
        _assert_status(decision_resp, 200)
        if not decision_resp.json()["allowed"]:
            raise RuntimeError(f"propagated permission was not honoured: {decision_resp.json()}")

    print("demo_assignment: role assignment flow ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
