from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlmodel import Session

from asset_buddy.api.deps import get_current_claims, require_any_perm, require_perm
from asset_buddy.domain.models import (
    AcceptAssignmentRequest,
    ApproveReturnRequest,
    AssignmentCreate,
    AssignmentRead,
    AssignmentStatusCountRead,
    RefuseAssignmentRequest,
    RejectReturnRequest,
    ReturnRequest,
    RevertAssignmentRead,
    RevertAssignmentRequest,
)
from asset_buddy.domain.permissions import (
    PERM_ASSIGNMENT_MANAGE,
    PERM_ASSIGNMENT_READ,
    PERM_ASSIGNMENT_RESPOND,
    has_permission,
)
from asset_buddy.domain.state_machine import AssignmentStatus
from asset_buddy.infra.audit import set_audit_context
from asset_buddy.infra.db import get_session
from asset_buddy.services.assignment_service import (
    AssignmentError,
    AssignmentService,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssignmentService, Depends(get_assignment_service)]
DbSession = Annotated[Session, Depends(get_session)]


def _handle_assignment_error(exc: AssignmentError) -> None:
    if isinstance(exc, (ValidationError, InvalidStateError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def create_assignment(
    payload: AssignmentCreate,
    request: Request,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.create_assignment(session, claims["sub"], payload)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise
    set_audit_context(
        request,
        action="assignment.create",
        resource=f"/api/assignments/{row.id}",
        detail={"asset_id": row.asset_id},
    )
    return AssignmentRead.model_validate(row)


@router.get(
    "",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_READ))],
)
def list_assignments(
    session: DbSession,
    service: Service,
    assignment_status: Annotated[AssignmentStatus | None, Query(alias="status")] = None,
    asset_id: int | None = None,
    receiver_user_id: str | None = None,
) -> list[AssignmentRead]:
    rows = service.list_assignments(
        session,
        receiver_user_id=receiver_user_id,
        status=assignment_status,
        asset_id=asset_id,
    )
    return [AssignmentRead.model_validate(item) for item in rows]


@router.get(
    "/mine",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_RESPOND))],
)
def list_my_assignments(
    claims: Claims,
    session: DbSession,
    service: Service,
    assignment_status: Annotated[AssignmentStatus | None, Query(alias="status")] = None,
) -> list[AssignmentRead]:
    rows = service.list_assignments(session, receiver_user_id=claims["sub"], status=assignment_status)
    return [AssignmentRead.model_validate(item) for item in rows]


@router.get(
    "/summary",
    response_model=list[AssignmentStatusCountRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_READ))],
)
def assignment_summary(session: DbSession, service: Service) -> list[AssignmentStatusCountRead]:
    counts = service.count_by_status(session)
    return [AssignmentStatusCountRead(status=item, count=count) for item, count in counts.items()]


@router.get(
    "/{assignment_id}",
    response_model=AssignmentRead,
    dependencies=[Depends(require_any_perm(PERM_ASSIGNMENT_READ, PERM_ASSIGNMENT_RESPOND))],
)
def get_assignment(
    assignment_id: str,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    viewer_user_id = None if has_permission(claims, PERM_ASSIGNMENT_READ) else claims["sub"]
    try:
        row = service.get_assignment(session, assignment_id, viewer_user_id=viewer_user_id)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/accept",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_RESPOND))],
)
def accept_assignment(
    assignment_id: str,
    payload: AcceptAssignmentRequest,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.accept_assignment(session, assignment_id, claims["sub"], payload)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/refuse",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_RESPOND))],
)
def refuse_assignment(
    assignment_id: str,
    payload: RefuseAssignmentRequest,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.refuse_assignment(session, assignment_id, claims["sub"], payload)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/request-return",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_RESPOND))],
)
def request_return(
    assignment_id: str,
    payload: ReturnRequest,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.request_return(session, assignment_id, claims["sub"], payload)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/admin-approve-return",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def approve_return(
    assignment_id: str,
    payload: ApproveReturnRequest,
    request: Request,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    set_audit_context(
        request,
        action="assignment.approve_return",
        detail={"next_asset_status": payload.next_asset_status},
    )
    try:
        row = service.approve_return(session, assignment_id, claims["sub"], payload)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/admin-reject-return",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def reject_return(
    assignment_id: str,
    payload: RejectReturnRequest,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.reject_return(session, assignment_id, claims["sub"], payload)
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/cancel",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def cancel_assignment(
    assignment_id: str,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> AssignmentRead:
    try:
        row = service.cancel_pending_assignment(session, assignment_id, claims["sub"])
        return AssignmentRead.model_validate(row)
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise


@router.post(
    "/{assignment_id}/revert",
    response_model=RevertAssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def revert_assignment(
    assignment_id: str,
    payload: RevertAssignmentRequest,
    request: Request,
    claims: Claims,
    session: DbSession,
    service: Service,
) -> RevertAssignmentRead:
    try:
        result = service.revert_assignment(
            session,
            assignment_id,
            claims["sub"],
            reason=payload.reason,
            actor_label=claims.get("email"),
        )
    except AssignmentError as exc:
        _handle_assignment_error(exc)
        raise
    set_audit_context(
        request,
        action="assignment.revert",
        detail={"already_finalized": result.already_finalized},
    )
    return RevertAssignmentRead(
        assignment=AssignmentRead.model_validate(result.assignment),
        already_finalized=result.already_finalized,
    )


@router.delete(
    "/{assignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_MANAGE))],
)
def delete_assignment(assignment_id: str, session: DbSession, service: Service) -> Response:
    if not service.delete_assignment(session, assignment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="assignment not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
