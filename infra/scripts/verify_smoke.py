from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx

from asset_buddy.domain.permissions import ADMIN_PERMISSIONS, STAFF_PERMISSIONS
from asset_buddy.infra.auth import create_access_token


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def main() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://localhost:8000")
    run_id = uuid4().hex[:8]
    admin = create_access_token(user_id=f"smoke-admin-{run_id}", permissions=ADMIN_PERMISSIONS)
    staff_id = f"smoke-staff-{run_id}"
    staff = create_access_token(user_id=staff_id, permissions=STAFF_PERMISSIONS)

    async with httpx.AsyncClient(base_url=base_url, timeout=15.0) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        asset_resp = await client.post(
            "/api/assets",
            json={
                "asset_tag": f"SMOKE-{run_id}",
                "asset_type": "LAPTOP",
                "brand": "Lenovo",
                "model": "T14",
                "location": "HQ",
            },
            headers=_auth_headers(admin),
        )
        _assert_status(asset_resp, 201)
        asset_id = asset_resp.json()["id"]

        create_resp = await client.post(
            "/api/assignments",
            json={"asset_id": asset_id, "staff_id": f"S-{run_id}", "receiver_user_id": staff_id},
            headers=_auth_headers(admin),
        )
        _assert_status(create_resp, 201)
        assignment_id = create_resp.json()["id"]

        duplicate_resp = await client.post(
            "/api/assignments",
            json={"asset_id": asset_id, "staff_id": f"S-{run_id}", "receiver_user_id": staff_id},
            headers=_auth_headers(admin),
        )
        _assert_status(duplicate_resp, 409)

        accept_resp = await client.post(
            f"/api/assignments/{assignment_id}/accept",
            json={"terms_accepted": True, "terms_version": "v1", "accepted_terms": [True] * 5},
            headers=_auth_headers(staff),
        )
        _assert_status(accept_resp, 200)

        return_resp = await client.post(
            f"/api/assignments/{assignment_id}/request-return",
            json={},
            headers=_auth_headers(staff),
        )
        _assert_status(return_resp, 200)

        approve_resp = await client.post(
            f"/api/assignments/{assignment_id}/admin-approve-return",
            json={
                "final_return_condition": {"body": "ok"},
                "final_accessories_returned": [],
                "next_asset_status": "AVAILABLE",
            },
            headers=_auth_headers(admin),
        )
        _assert_status(approve_resp, 200)

        asset_check = await client.get(f"/api/assets/{asset_id}", headers=_auth_headers(admin))
        _assert_status(asset_check, 200)
        if asset_check.json()["status"] != "IN_STOCK":
            raise RuntimeError(f"asset {asset_id} not back in stock: {asset_check.json()}")

    print(f"smoke ok: asset={asset_id} assignment={assignment_id}")


if __name__ == "__main__":
    asyncio.run(main())
