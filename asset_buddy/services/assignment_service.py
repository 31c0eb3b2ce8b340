from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from asset_buddy.domain.models import (
    AcceptAssignmentRequest,
    ApproveReturnRequest,
    Asset,
    AssetStatus,
    Assignment,
    AssignmentCreate,
    AssignmentTargetType,
    EventEnvelope,
    NextAssetStatus,
    RefuseAssignmentRequest,
    RejectReturnRequest,
    ReturnRequest,
    now_utc,
)
from asset_buddy.domain.policies import (
    REQUIRED_TERMS_COUNT,
    append_note,
    is_accessories_allowed_type,
    is_staff_assignable_type,
)
from asset_buddy.domain.state_machine import (
    FINALIZED_ASSIGNMENT_STATUSES,
    OPEN_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    can_transition,
)
from asset_buddy.infra.db import run_with_retry
from asset_buddy.infra.events import event_bus
from asset_buddy.services.activity_log_service import ActivityLogService
from asset_buddy.services.asset_registry_service import AssetRegistry
from asset_buddy.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPEN_STATUSES = sorted(OPEN_ASSIGNMENT_STATUSES)
UNASSIGNABLE_ASSET_STATUSES = {AssetStatus.IN_REPAIR, AssetStatus.RETIRED}
NEXT_ASSET_STATUS = {
    NextAssetStatus.AVAILABLE: AssetStatus.IN_STOCK,
    NextAssetStatus.UNDER_REPAIR: AssetStatus.IN_REPAIR,
}
ENTITY_ASSET = "ASSET"


class AssignmentError(Exception):
    pass


class ValidationError(AssignmentError):
    pass


class NotFoundError(AssignmentError):
    pass


class ForbiddenError(AssignmentError):
    pass


class InvalidStateError(AssignmentError):
    pass


class ConflictError(AssignmentError):
    pass


@dataclass
class RevertResult:
    assignment: Assignment
    already_finalized: bool


class AssignmentService:
    def __init__(
        self,
        asset_registry: AssetRegistry | None = None,
        notifications: NotificationDispatcher | None = None,
        activity_log: ActivityLogService | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._activity_log = activity_log or ActivityLogService()
        self._assets = asset_registry or AssetRegistry(self._activity_log)
        self._notifications = notifications or NotificationDispatcher()
        self._max_attempts = max_attempts

    def _run(self, session: Session, operation: Callable[[], T]) -> T:
        try:
            return run_with_retry(session, operation, max_attempts=self._max_attempts)
        except IntegrityError as exc:
            raise ConflictError("asset already has an open assignment") from exc

    def _lock_assignment(self, session: Session, assignment_id: str) -> Assignment:
        assignment = session.exec(
            select(Assignment)
            .where(Assignment.id == assignment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if assignment is None:
            raise NotFoundError("assignment not found")
        return assignment

    def _lock_asset(self, session: Session, asset_id: int) -> Asset:
        asset = self._assets.get_asset_for_update(session, asset_id)
        if asset is None:
            raise NotFoundError("asset not found")
        return asset

    def _latest_open_assignment(self, session: Session, asset_id: int) -> Assignment | None:
        return session.exec(
            select(Assignment)
            .where(Assignment.asset_id == asset_id)
            .where(col(Assignment.status).in_(OPEN_STATUSES))
            .order_by(col(Assignment.assigned_date).desc(), col(Assignment.created_at).desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def _sync_asset_status(self, session: Session, asset: Asset) -> AssetStatus:
        # Flush first so the re-query sees this transaction's own status write.
        session.flush()
        if self._latest_open_assignment(session, asset.id) is not None:  # type: ignore[arg-type]
            target = AssetStatus.ASSIGNED
        elif asset.status == AssetStatus.ASSIGNED:
            target = AssetStatus.IN_STOCK
        else:
            target = asset.status
        self._assets.set_asset_status(session, asset, target)
        return target

    def _ensure_receiver(self, assignment: Assignment, caller_user_id: str, action: str) -> None:
        if assignment.receiver_user_id is None or assignment.receiver_user_id != caller_user_id:
            raise ForbiddenError(f"only the designated receiver can {action} this assignment")

    def _ensure_transition(self, assignment: Assignment, target: AssignmentStatus, message: str) -> None:
        if not can_transition(assignment.status, target):
            raise InvalidStateError(f"{message} (current status: {assignment.status})")

    def _set_status(self, session: Session, assignment: Assignment, target: AssignmentStatus) -> AssignmentStatus:
        previous = assignment.status
        assignment.status = target
        assignment.updated_at = now_utc()
        session.add(assignment)
        return previous

    def _record(self, session: Session, action: str, asset: Asset, message: str) -> None:
        self._activity_log.record(
            session,
            action=action,
            entity_type=ENTITY_ASSET,
            entity_id=str(asset.id),
            message=message,
        )

    def _after_commit(
        self,
        session: Session,
        event_type: str,
        assignment: Assignment,
        actor_id: str | None,
        side_effect: Callable[[], object] | None = None,
    ) -> None:
        if side_effect is not None:
            try:
                side_effect()
                session.commit()
            except Exception:
                session.rollback()
                logger.exception(
                    "post-commit notification dispatch failed event=%s assignment_id=%s",
                    event_type,
                    assignment.id,
                )

        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id,
            payload={
                "assignment_id": assignment.id,
                "asset_id": assignment.asset_id,
                "status": assignment.status,
            },
        )
        try:
            event_bus.record(event, session)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "post-commit event record failed event=%s assignment_id=%s",
                event_type,
                assignment.id,
            )
        # Subscribers see the event only once the transition and its side effects are durable.
        event_bus.dispatch(event)

    def _check_assignable(self, asset: Asset, payload: AssignmentCreate) -> None:
        if payload.target_type == AssignmentTargetType.STAFF and not is_staff_assignable_type(asset.asset_type):
            raise ValidationError(f"asset type {asset.asset_type} cannot be assigned to staff")
        if payload.accessories_issued and not is_accessories_allowed_type(asset.asset_type):
            raise ValidationError(f"accessories are not tracked for asset type {asset.asset_type}")

    def create_assignment(self, session: Session, actor_id: str, payload: AssignmentCreate) -> Assignment:
        def _tx() -> tuple[Assignment, str]:
            asset = self._lock_asset(session, payload.asset_id)
            self._check_assignable(asset, payload)
            if self._latest_open_assignment(session, payload.asset_id) is not None:
                raise ConflictError("asset already assigned")
            if asset.status in UNASSIGNABLE_ASSET_STATUSES:
                raise InvalidStateError(f"asset is {asset.status} and cannot be assigned")

            receiver_user_id = payload.receiver_user_id
            if payload.target_type != AssignmentTargetType.STAFF and receiver_user_id is None:
                receiver_user_id = actor_id
            assignment = Assignment(
                asset_id=payload.asset_id,
                target_type=payload.target_type,
                staff_id=payload.staff_id,
                receiver_user_id=receiver_user_id,
                location=payload.location,
                department=payload.department,
                assigned_by=actor_id,
                assigned_date=payload.assigned_date,
                status=AssignmentStatus.PENDING_ACCEPTANCE,
                issue_condition=payload.issue_condition,
                accessories_issued=payload.accessories_issued,
                notes=payload.notes,
            )
            session.add(assignment)
            self._assets.set_asset_status(session, asset, AssetStatus.ASSIGNED)
            target_label = payload.staff_id or payload.location or payload.department
            self._record(
                session,
                "ASSIGNMENT_CREATED",
                asset,
                f"Asset {asset.asset_tag} assigned to {payload.target_type.lower()} {target_label}",
            )
            session.commit()
            return assignment, asset.asset_tag

        assignment, asset_tag = self._run(session, _tx)
        logger.info(
            "assignment created id=%s asset_id=%s receiver=%s",
            assignment.id,
            assignment.asset_id,
            assignment.receiver_user_id,
        )

        def _notify() -> None:
            if assignment.receiver_user_id is not None:
                self._notifications.notify_pending_acceptance(
                    session,
                    assignment_id=assignment.id,
                    receiver_user_id=assignment.receiver_user_id,
                    asset_tag=asset_tag,
                )
            self._notifications.notify_awaiting_acceptance(
                session,
                assignment_id=assignment.id,
                admin_user_id=actor_id,
                asset_tag=asset_tag,
            )

        self._after_commit(session, "assignment.created", assignment, actor_id, _notify)
        return assignment

    def accept_assignment(
        self,
        session: Session,
        assignment_id: str,
        caller_user_id: str,
        payload: AcceptAssignmentRequest,
    ) -> Assignment:
        if not payload.terms_accepted:
            raise ValidationError("terms must be accepted")
        if len(payload.accepted_terms) != REQUIRED_TERMS_COUNT:
            raise ValidationError("missing required terms acknowledgement")
        if not all(payload.accepted_terms):
            raise ValidationError("all required terms must be accepted")

        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_receiver(assignment, caller_user_id, "accept")
            self._ensure_transition(assignment, AssignmentStatus.ACTIVE, "only pending assignments can be accepted")
            asset = self._lock_asset(session, assignment.asset_id)
            now = now_utc()
            self._set_status(session, assignment, AssignmentStatus.ACTIVE)
            assignment.terms_version = payload.terms_version
            assignment.terms_accepted = True
            assignment.terms_accepted_at = now
            assignment.accepted_by_user_id = caller_user_id
            assignment.accepted_at = now
            self._sync_asset_status(session, asset)
            self._record(session, "ASSIGNMENT_ACCEPTED", asset, f"Assignment of asset {asset.asset_tag} accepted")
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment accepted id=%s by=%s", assignment.id, caller_user_id)
        self._after_commit(
            session,
            "assignment.accepted",
            assignment,
            caller_user_id,
            lambda: self._notifications.mark_assignment_notifications_read(session, assignment.id),
        )
        return assignment

    def refuse_assignment(
        self,
        session: Session,
        assignment_id: str,
        caller_user_id: str,
        payload: RefuseAssignmentRequest,
    ) -> Assignment:
        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_receiver(assignment, caller_user_id, "refuse")
            self._ensure_transition(assignment, AssignmentStatus.REFUSED, "only pending assignments can be refused")
            asset = self._lock_asset(session, assignment.asset_id)
            self._set_status(session, assignment, AssignmentStatus.REFUSED)
            assignment.refused_at = now_utc()
            assignment.refused_reason = payload.reason.strip() if payload.reason and payload.reason.strip() else None
            self._sync_asset_status(session, asset)
            self._record(session, "ASSIGNMENT_REFUSED", asset, f"Assignment of asset {asset.asset_tag} refused")
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment refused id=%s by=%s", assignment.id, caller_user_id)
        self._after_commit(
            session,
            "assignment.refused",
            assignment,
            caller_user_id,
            lambda: self._notifications.mark_assignment_notifications_read(session, assignment.id),
        )
        return assignment

    def request_return(
        self,
        session: Session,
        assignment_id: str,
        caller_user_id: str,
        payload: ReturnRequest,
    ) -> Assignment:
        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_receiver(assignment, caller_user_id, "request return for")
            self._ensure_transition(
                assignment,
                AssignmentStatus.RETURN_REQUESTED,
                "only active or return-rejected assignments can request return",
            )
            asset = self._lock_asset(session, assignment.asset_id)
            if payload.accessories_returned and not is_accessories_allowed_type(asset.asset_type):
                raise ValidationError(f"accessories are not tracked for asset type {asset.asset_type}")
            self._set_status(session, assignment, AssignmentStatus.RETURN_REQUESTED)
            assignment.return_requested_at = now_utc()
            assignment.return_requested_by_user_id = caller_user_id
            if payload.return_condition is not None:
                assignment.return_condition = payload.return_condition
            if payload.accessories_returned is not None:
                assignment.accessories_returned = payload.accessories_returned
            self._sync_asset_status(session, asset)
            self._record(
                session,
                "ASSIGNMENT_RETURN_REQUESTED",
                asset,
                f"Return requested for asset {asset.asset_tag}",
            )
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment return requested id=%s by=%s", assignment.id, caller_user_id)
        self._after_commit(session, "assignment.return_requested", assignment, caller_user_id)
        return assignment

    def approve_return(
        self,
        session: Session,
        assignment_id: str,
        admin_id: str,
        payload: ApproveReturnRequest,
    ) -> Assignment:
        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_transition(
                assignment,
                AssignmentStatus.RETURN_APPROVED,
                "only return-requested assignments can be approved",
            )
            asset = self._lock_asset(session, assignment.asset_id)
            if payload.final_accessories_returned and not is_accessories_allowed_type(asset.asset_type):
                raise ValidationError(f"accessories are not tracked for asset type {asset.asset_type}")
            now = now_utc()
            self._set_status(session, assignment, AssignmentStatus.RETURN_APPROVED)
            assignment.return_approved_at = now
            assignment.return_approved_by_admin_id = admin_id
            assignment.returned_date = now
            assignment.return_condition = payload.final_return_condition
            assignment.accessories_returned = payload.final_accessories_returned
            assignment.notes = append_note(assignment.notes, payload.decision_note)
            next_status = NEXT_ASSET_STATUS[payload.next_asset_status]
            self._assets.set_asset_status(session, asset, next_status)
            self._record(
                session,
                "ASSIGNMENT_RETURN_APPROVED",
                asset,
                f"Return approved for asset {asset.asset_tag}, asset now {next_status}",
            )
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment return approved id=%s by=%s", assignment.id, admin_id)
        self._after_commit(session, "assignment.return_approved", assignment, admin_id)
        return assignment

    def reject_return(
        self,
        session: Session,
        assignment_id: str,
        admin_id: str,
        payload: RejectReturnRequest,
    ) -> Assignment:
        reason = payload.reason.strip()
        if not reason:
            raise ValidationError("a rejection reason is required")

        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_transition(
                assignment,
                AssignmentStatus.RETURN_REJECTED,
                "only return-requested assignments can be rejected",
            )
            asset = self._lock_asset(session, assignment.asset_id)
            self._set_status(session, assignment, AssignmentStatus.RETURN_REJECTED)
            assignment.return_rejected_at = now_utc()
            assignment.return_rejected_reason = reason
            assignment.notes = append_note(assignment.notes, f"Return rejected: {reason}")
            self._sync_asset_status(session, asset)
            self._record(
                session,
                "ASSIGNMENT_RETURN_REJECTED",
                asset,
                f"Return rejected for asset {asset.asset_tag}: {reason}",
            )
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment return rejected id=%s by=%s", assignment.id, admin_id)
        self._after_commit(session, "assignment.return_rejected", assignment, admin_id)
        return assignment

    def cancel_pending_assignment(self, session: Session, assignment_id: str, admin_id: str) -> Assignment:
        def _tx() -> Assignment:
            assignment = self._lock_assignment(session, assignment_id)
            self._ensure_transition(
                assignment,
                AssignmentStatus.CANCELLED,
                "only pending assignments can be cancelled",
            )
            asset = self._lock_asset(session, assignment.asset_id)
            self._set_status(session, assignment, AssignmentStatus.CANCELLED)
            self._sync_asset_status(session, asset)
            self._record(session, "ASSIGNMENT_CANCELLED", asset, f"Assignment of asset {asset.asset_tag} cancelled")
            session.commit()
            return assignment

        assignment = self._run(session, _tx)
        logger.info("assignment cancelled id=%s by=%s", assignment.id, admin_id)
        self._after_commit(
            session,
            "assignment.cancelled",
            assignment,
            admin_id,
            lambda: self._notifications.mark_assignment_notifications_read(session, assignment.id),
        )
        return assignment

    def revert_assignment(
        self,
        session: Session,
        assignment_id: str,
        admin_id: str,
        reason: str | None = None,
        actor_label: str | None = None,
    ) -> RevertResult:
        cleaned_reason = reason.strip() if reason and reason.strip() else None

        def _tx() -> RevertResult:
            assignment = self._lock_assignment(session, assignment_id)
            already_finalized = assignment.status in FINALIZED_ASSIGNMENT_STATUSES
            asset = self._lock_asset(session, assignment.asset_id)
            latest_open = self._latest_open_assignment(session, assignment.asset_id)
            if latest_open is not None and latest_open.id != assignment.id:
                raise ConflictError(
                    "cannot revert this assignment because a newer open assignment exists for the asset"
                )
            if not already_finalized:
                previous = self._set_status(session, assignment, AssignmentStatus.REVERTED)
                assignment.reverted_at = now_utc()
                assignment.reverted_by_user_id = admin_id
                assignment.revert_reason = cleaned_reason
                next_status = self._sync_asset_status(session, asset)
                actor = actor_label or admin_id
                message = f"Assignment reverted for asset {asset.asset_tag} by {actor}"
                if cleaned_reason:
                    message = f"{message}: {cleaned_reason}"
                self._record(session, "ASSIGNMENT_REVERTED", asset, message)
                logger.info(
                    "assignment reverted id=%s from=%s asset_id=%s asset_status=%s",
                    assignment.id,
                    previous,
                    asset.id,
                    next_status,
                )
            session.commit()
            return RevertResult(assignment=assignment, already_finalized=already_finalized)

        result = self._run(session, _tx)
        if not result.already_finalized:
            self._after_commit(
                session,
                "assignment.reverted",
                result.assignment,
                admin_id,
                lambda: self._notifications.mark_assignment_notifications_read(session, result.assignment.id),
            )
        return result

    def delete_assignment(self, session: Session, assignment_id: str) -> bool:
        def _tx() -> bool:
            assignment = session.exec(
                select(Assignment).where(Assignment.id == assignment_id).with_for_update()
            ).first()
            if assignment is None:
                session.rollback()
                return False
            if assignment.status in OPEN_ASSIGNMENT_STATUSES:
                logger.warning(
                    "deleting open assignment id=%s status=%s; asset %s status left unchanged",
                    assignment.id,
                    assignment.status,
                    assignment.asset_id,
                )
            self._activity_log.record(
                session,
                action="ASSIGNMENT_DELETED",
                entity_type="ASSIGNMENT",
                entity_id=assignment.id,
                message=f"Assignment {assignment.id} for asset {assignment.asset_id} deleted",
            )
            session.delete(assignment)
            session.commit()
            return True

        return self._run(session, _tx)

    def get_assignment(self, session: Session, assignment_id: str, viewer_user_id: str | None = None) -> Assignment:
        assignment = session.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment not found")
        if viewer_user_id is not None and assignment.receiver_user_id != viewer_user_id:
            raise ForbiddenError("access denied")
        return assignment

    def list_assignments(
        self,
        session: Session,
        *,
        receiver_user_id: str | None = None,
        status: AssignmentStatus | None = None,
        asset_id: int | None = None,
    ) -> list[Assignment]:
        statement = select(Assignment)
        if receiver_user_id is not None:
            statement = statement.where(Assignment.receiver_user_id == receiver_user_id)
        if status is not None:
            statement = statement.where(Assignment.status == status)
        if asset_id is not None:
            statement = statement.where(Assignment.asset_id == asset_id)
        statement = statement.order_by(col(Assignment.assigned_date).desc(), col(Assignment.created_at).desc())
        return list(session.exec(statement).all())

    def count_by_status(self, session: Session) -> dict[AssignmentStatus, int]:
        rows = session.exec(
            select(Assignment.status, func.count()).group_by(Assignment.status)
        ).all()
        counts = {status: 0 for status in AssignmentStatus}
        for status, count in rows:
            counts[AssignmentStatus(status)] = int(count)
        return counts
