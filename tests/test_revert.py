from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from asset_buddy.domain.models import (
    AcceptAssignmentRequest,
    ActivityLog,
    ApproveReturnRequest,
    Asset,
    AssetStatus,
    AssetType,
    Assignment,
    AssignmentCreate,
    NextAssetStatus,
    ReturnRequest,
)
from asset_buddy.domain.state_machine import AssignmentStatus
from asset_buddy.infra import audit, db, events
from asset_buddy.services.assignment_service import AssignmentService, ConflictError, NotFoundError

ADMIN_ID = "admin-1"
STAFF_USER_ID = "user-staff-s"


@pytest.fixture()
def session(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Session, None, None]:
    db_path = tmp_path / "revert_test.db"
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
    with Session(test_engine, expire_on_commit=False) as db_session:
        yield db_session


@pytest.fixture()
def service() -> AssignmentService:
    return AssignmentService()


@pytest.fixture()
def asset(session: Session) -> Asset:
    row = Asset(
        asset_tag="LT-0100",
        asset_type=AssetType.LAPTOP,
        brand="Dell",
        model="Latitude 5440",
        location="HQ",
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def _create(session: Session, service: AssignmentService, asset_id: int, staff_id: str = "S-001") -> Assignment:
    return service.create_assignment(
        session,
        ADMIN_ID,
        AssignmentCreate(asset_id=asset_id, staff_id=staff_id, receiver_user_id=STAFF_USER_ID),
    )


def _complete_return(
    session: Session,
    service: AssignmentService,
    assignment_id: str,
    next_status: NextAssetStatus = NextAssetStatus.AVAILABLE,
) -> None:
    service.accept_assignment(
        session,
        assignment_id,
        STAFF_USER_ID,
        AcceptAssignmentRequest(terms_accepted=True, terms_version="v1", accepted_terms=[True] * 5),
    )
    service.request_return(session, assignment_id, STAFF_USER_ID, ReturnRequest())
    service.approve_return(
        session,
        assignment_id,
        ADMIN_ID,
        ApproveReturnRequest(
            final_return_condition={"body": "ok"},
            final_accessories_returned=[],
            next_asset_status=next_status,
        ),
    )


def _asset_status(asset_id: int) -> AssetStatus:
    with Session(db.engine) as check_session:
        row = check_session.get(Asset, asset_id)
        assert row is not None
        return row.status


def _revert_log_count() -> int:
    with Session(db.engine) as check_session:
        rows = check_session.exec(select(ActivityLog).where(ActivityLog.action == "ASSIGNMENT_REVERTED")).all()
        return len(rows)


def test_revert_active_assignment_releases_asset(session: Session, service: AssignmentService, asset: Asset) -> None:
    assignment = _create(session, service, asset.id)  # type: ignore[arg-type]
    service.accept_assignment(
        session,
        assignment.id,
        STAFF_USER_ID,
        AcceptAssignmentRequest(terms_accepted=True, terms_version="v1", accepted_terms=[True] * 5),
    )

    result = service.revert_assignment(
        session,
        assignment.id,
        ADMIN_ID,
        reason="  issued to wrong person  ",
        actor_label="admin@example.com",
    )

    assert result.already_finalized is False
    assert result.assignment.status == AssignmentStatus.REVERTED
    assert result.assignment.revert_reason == "issued to wrong person"
    assert result.assignment.reverted_by_user_id == ADMIN_ID
    assert _asset_status(asset.id) == AssetStatus.IN_STOCK  # type: ignore[arg-type]
    with Session(db.engine) as check_session:
        entry = check_session.exec(select(ActivityLog).where(ActivityLog.action == "ASSIGNMENT_REVERTED")).one()
    assert entry.message == "Assignment reverted for asset LT-0100 by admin@example.com: issued to wrong person"


def test_revert_blocked_by_newer_open_assignment(session: Session, service: AssignmentService, asset: Asset) -> None:
    older = _create(session, service, asset.id)  # type: ignore[arg-type]
    _complete_return(session, service, older.id)
    newer = _create(session, service, asset.id, staff_id="S-002")  # type: ignore[arg-type]

    with pytest.raises(ConflictError):
        service.revert_assignment(session, older.id, ADMIN_ID)
    assert service.get_assignment(session, older.id).status == AssignmentStatus.RETURN_APPROVED
    assert _asset_status(asset.id) == AssetStatus.ASSIGNED  # type: ignore[arg-type]

    result = service.revert_assignment(session, newer.id, ADMIN_ID)
    assert result.already_finalized is False
    assert result.assignment.status == AssignmentStatus.REVERTED
    assert _asset_status(asset.id) == AssetStatus.IN_STOCK  # type: ignore[arg-type]


def test_revert_is_idempotent_for_finalized_assignments(
    session: Session,
    service: AssignmentService,
    asset: Asset,
) -> None:
    assignment = _create(session, service, asset.id)  # type: ignore[arg-type]
    first = service.revert_assignment(session, assignment.id, ADMIN_ID, reason="mistake")
    assert first.already_finalized is False
    reverted_at = first.assignment.reverted_at

    second = service.revert_assignment(session, assignment.id, ADMIN_ID, reason="again")
    third = service.revert_assignment(session, assignment.id, "admin-2")

    for result in (second, third):
        assert result.already_finalized is True
        assert result.assignment.status == AssignmentStatus.REVERTED
        assert result.assignment.revert_reason == "mistake"
        assert result.assignment.reverted_by_user_id == ADMIN_ID
        assert result.assignment.reverted_at == reverted_at
    assert _asset_status(asset.id) == AssetStatus.IN_STOCK  # type: ignore[arg-type]
    assert _revert_log_count() == 1


def test_revert_cancelled_assignment_is_noop(session: Session, service: AssignmentService, asset: Asset) -> None:
    assignment = _create(session, service, asset.id)  # type: ignore[arg-type]
    service.cancel_pending_assignment(session, assignment.id, ADMIN_ID)

    result = service.revert_assignment(session, assignment.id, ADMIN_ID)

    assert result.already_finalized is True
    assert result.assignment.status == AssignmentStatus.CANCELLED
    assert _revert_log_count() == 0


def test_revert_after_return_keeps_repair_status(session: Session, service: AssignmentService, asset: Asset) -> None:
    assignment = _create(session, service, asset.id)  # type: ignore[arg-type]
    _complete_return(session, service, assignment.id, NextAssetStatus.UNDER_REPAIR)

    result = service.revert_assignment(session, assignment.id, ADMIN_ID)

    assert result.assignment.status == AssignmentStatus.REVERTED
    assert _asset_status(asset.id) == AssetStatus.IN_REPAIR  # type: ignore[arg-type]


def test_revert_missing_assignment(session: Session, service: AssignmentService) -> None:
    with pytest.raises(NotFoundError):
        service.revert_assignment(session, "missing", ADMIN_ID)
