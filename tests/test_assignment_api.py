from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from asset_buddy import main as app_main
from asset_buddy.domain.models import AuditLog
from asset_buddy.domain.permissions import ADMIN_PERMISSIONS, STAFF_PERMISSIONS
from asset_buddy.infra import audit, db, events
from asset_buddy.infra.auth import create_access_token


@pytest.fixture()
def assignment_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "assignment_api_test.db"
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
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_token() -> str:
    return create_access_token(user_id="admin-1", permissions=ADMIN_PERMISSIONS, email="admin@example.com")


def _staff_token(user_id: str = "user-staff-s") -> str:
    return create_access_token(user_id=user_id, permissions=STAFF_PERMISSIONS)


def _create_asset(client: TestClient, token: str, asset_tag: str, asset_type: str = "LAPTOP") -> int:
    response = client.post(
        "/api/assets",
        json={
            "asset_tag": asset_tag,
            "asset_type": asset_type,
            "brand": "Lenovo",
            "model": "T14",
            "location": "HQ",
        },
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["id"]


def _create_assignment(client: TestClient, token: str, asset_id: int, receiver: str = "user-staff-s") -> str:
    response = client.post(
        "/api/assignments",
        json={
            "asset_id": asset_id,
            "target_type": "STAFF",
            "staff_id": "S-001",
            "receiver_user_id": receiver,
            "issue_condition": {"screen": "good"},
            "accessories_issued": ["charger"],
        },
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING_ACCEPTANCE"
    return body["id"]


def _accept_body() -> dict[str, object]:
    return {"terms_accepted": True, "terms_version": "v1", "accepted_terms": [True] * 5}


def test_assignment_return_flow_over_http(assignment_client: TestClient) -> None:
    admin = _admin_token()
    staff = _staff_token()
    asset_id = _create_asset(assignment_client, admin, "LT-0042")
    assignment_id = _create_assignment(assignment_client, admin, asset_id)

    mine = assignment_client.get("/api/assignments/mine", headers=_auth_header(staff))
    assert mine.status_code == 200
    assert [item["id"] for item in mine.json()] == [assignment_id]

    accepted = assignment_client.post(
        f"/api/assignments/{assignment_id}/accept",
        json=_accept_body(),
        headers=_auth_header(staff),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "ACTIVE"

    requested = assignment_client.post(
        f"/api/assignments/{assignment_id}/request-return",
        json={"return_condition": {"screen": "scratched"}, "accessories_returned": ["charger"]},
        headers=_auth_header(staff),
    )
    assert requested.status_code == 200
    assert requested.json()["status"] == "RETURN_REQUESTED"

    rejected = assignment_client.post(
        f"/api/assignments/{assignment_id}/admin-reject-return",
        json={"reason": "needs cleaning"},
        headers=_auth_header(admin),
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "RETURN_REJECTED"
    asset_resp = assignment_client.get(f"/api/assets/{asset_id}", headers=_auth_header(admin))
    assert asset_resp.json()["status"] == "ASSIGNED"

    again = assignment_client.post(
        f"/api/assignments/{assignment_id}/request-return",
        json={},
        headers=_auth_header(staff),
    )
    assert again.status_code == 200

    approved = assignment_client.post(
        f"/api/assignments/{assignment_id}/admin-approve-return",
        json={
            "final_return_condition": {"screen": "scratched"},
            "final_accessories_returned": ["charger"],
            "decision_note": "ok",
            "next_asset_status": "AVAILABLE",
        },
        headers=_auth_header(admin),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "RETURN_APPROVED"
    assert approved.json()["return_rejected_reason"] == "needs cleaning"

    asset_resp = assignment_client.get(f"/api/assets/{asset_id}", headers=_auth_header(admin))
    assert asset_resp.status_code == 200
    assert asset_resp.json()["status"] == "IN_STOCK"

    summary = assignment_client.get("/api/assignments/summary", headers=_auth_header(admin))
    assert summary.status_code == 200
    counts = {item["status"]: item["count"] for item in summary.json()}
    assert counts["RETURN_APPROVED"] == 1
    assert counts["ACTIVE"] == 0


def test_lifecycle_errors_map_to_http_status(assignment_client: TestClient) -> None:
    admin = _admin_token()
    staff = _staff_token()
    asset_id = _create_asset(assignment_client, admin, "LT-0001")
    assignment_id = _create_assignment(assignment_client, admin, asset_id)

    duplicate = assignment_client.post(
        "/api/assignments",
        json={"asset_id": asset_id, "staff_id": "S-002", "receiver_user_id": "user-2"},
        headers=_auth_header(admin),
    )
    assert duplicate.status_code == 409

    stranger = assignment_client.post(
        f"/api/assignments/{assignment_id}/accept",
        json=_accept_body(),
        headers=_auth_header(_staff_token("user-other")),
    )
    assert stranger.status_code == 403

    partial_terms = assignment_client.post(
        f"/api/assignments/{assignment_id}/accept",
        json={"terms_accepted": True, "terms_version": "v1", "accepted_terms": [True] * 3},
        headers=_auth_header(staff),
    )
    assert partial_terms.status_code == 400

    malformed = assignment_client.post(
        f"/api/assignments/{assignment_id}/accept",
        json={"terms_accepted": True},
        headers=_auth_header(staff),
    )
    assert malformed.status_code == 422

    wrong_state = assignment_client.post(
        f"/api/assignments/{assignment_id}/admin-approve-return",
        json={
            "final_return_condition": {},
            "final_accessories_returned": [],
            "next_asset_status": "AVAILABLE",
        },
        headers=_auth_header(admin),
    )
    assert wrong_state.status_code == 400

    missing = assignment_client.post(
        "/api/assignments/does-not-exist/cancel",
        headers=_auth_header(admin),
    )
    assert missing.status_code == 404

    printer_id = _create_asset(assignment_client, admin, "PR-0001", asset_type="PRINTER")
    printer_to_staff = assignment_client.post(
        "/api/assignments",
        json={"asset_id": printer_id, "staff_id": "S-003", "receiver_user_id": "user-3"},
        headers=_auth_header(admin),
    )
    assert printer_to_staff.status_code == 400

    mixed_target = assignment_client.post(
        "/api/assignments",
        json={"asset_id": printer_id, "target_type": "LOCATION", "location": "Floor 2", "staff_id": "S-003"},
        headers=_auth_header(admin),
    )
    assert mixed_target.status_code == 422


def test_permissions_guard_admin_and_staff_routes(assignment_client: TestClient) -> None:
    admin = _admin_token()
    staff = _staff_token()
    asset_id = _create_asset(assignment_client, admin, "LT-0002")
    assignment_id = _create_assignment(assignment_client, admin, asset_id)

    staff_create = assignment_client.post(
        "/api/assignments",
        json={"asset_id": asset_id, "staff_id": "S-001", "receiver_user_id": "user-staff-s"},
        headers=_auth_header(staff),
    )
    assert staff_create.status_code == 403

    staff_cancel = assignment_client.post(
        f"/api/assignments/{assignment_id}/cancel",
        headers=_auth_header(staff),
    )
    assert staff_cancel.status_code == 403

    staff_list = assignment_client.get("/api/assignments", headers=_auth_header(staff))
    assert staff_list.status_code == 403

    own = assignment_client.get(f"/api/assignments/{assignment_id}", headers=_auth_header(staff))
    assert own.status_code == 200
    other = assignment_client.get(
        f"/api/assignments/{assignment_id}",
        headers=_auth_header(_staff_token("user-other")),
    )
    assert other.status_code == 403

    bad_token = assignment_client.get("/api/assignments", headers=_auth_header("not-a-jwt"))
    assert bad_token.status_code == 401


def test_revert_cancel_and_delete_over_http(assignment_client: TestClient) -> None:
    admin = _admin_token()
    asset_id = _create_asset(assignment_client, admin, "LT-0003")
    first_id = _create_assignment(assignment_client, admin, asset_id)

    cancelled = assignment_client.post(f"/api/assignments/{first_id}/cancel", headers=_auth_header(admin))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    second_id = _create_assignment(assignment_client, admin, asset_id)
    reverted = assignment_client.post(
        f"/api/assignments/{second_id}/revert",
        json={"reason": "wrong receiver"},
        headers=_auth_header(admin),
    )
    assert reverted.status_code == 200
    assert reverted.json()["already_finalized"] is False
    assert reverted.json()["assignment"]["status"] == "REVERTED"
    assert reverted.json()["assignment"]["revert_reason"] == "wrong receiver"

    repeated = assignment_client.post(
        f"/api/assignments/{second_id}/revert",
        json={},
        headers=_auth_header(admin),
    )
    assert repeated.status_code == 200
    assert repeated.json()["already_finalized"] is True

    asset_resp = assignment_client.get(f"/api/assets/{asset_id}", headers=_auth_header(admin))
    assert asset_resp.json()["status"] == "IN_STOCK"

    deleted = assignment_client.delete(f"/api/assignments/{first_id}", headers=_auth_header(admin))
    assert deleted.status_code == 204
    gone = assignment_client.delete(f"/api/assignments/{first_id}", headers=_auth_header(admin))
    assert gone.status_code == 404

    listed = assignment_client.get(
        "/api/assignments",
        params={"asset_id": asset_id},
        headers=_auth_header(admin),
    )
    assert [item["id"] for item in listed.json()] == [second_id]

    activity = assignment_client.get(
        "/api/activity",
        params={"entity_type": "ASSET", "entity_id": str(asset_id)},
        headers=_auth_header(admin),
    )
    assert activity.status_code == 200
    actions = [item["action"] for item in activity.json()]
    assert "ASSIGNMENT_REVERTED" in actions
    assert "ASSET_CREATED" in actions


def test_write_requests_are_audited(assignment_client: TestClient) -> None:
    admin = _admin_token()
    asset_id = _create_asset(assignment_client, admin, "LT-0004")
    assignment_id = _create_assignment(assignment_client, admin, asset_id)
    assignment_client.post(
        "/api/assignments",
        json={"asset_id": asset_id, "staff_id": "S-002", "receiver_user_id": "user-2"},
        headers=_auth_header(admin),
    )

    with Session(db.engine) as session:
        rows = session.exec(select(AuditLog).where(AuditLog.actor_id == "admin-1")).all()

    created = [row for row in rows if row.action == "assignment.create"]
    assert len(created) == 1
    assert created[0].resource == f"/api/assignments/{assignment_id}"
    assert created[0].detail["outcome"] == "success"
    assert created[0].detail["asset_id"] == asset_id
    conflicts = [row for row in rows if row.detail.get("outcome") == "conflict"]
    assert len(conflicts) == 1
    assert conflicts[0].status_code == 409
