from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from asset_buddy.api.deps import get_current_claims, require_perm
from asset_buddy.domain.models import NotificationRead, UnreadCountRead
from asset_buddy.domain.permissions import PERM_NOTIFICATION_READ
from asset_buddy.infra.db import get_session
from asset_buddy.services.notification_service import DEFAULT_LIST_LIMIT, NotificationDispatcher

router = APIRouter()


def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]
DbSession = Annotated[Session, Depends(get_session)]


@router.get(
    "",
    response_model=list[NotificationRead],
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def list_notifications(
    claims: Claims,
    session: DbSession,
    dispatcher: Dispatcher,
    limit: Annotated[int, Query(ge=1, le=100)] = DEFAULT_LIST_LIMIT,
) -> list[NotificationRead]:
    rows = dispatcher.list_for_user(session, claims["sub"], limit=limit)
    return [NotificationRead.model_validate(item) for item in rows]


@router.get(
    "/unread-count",
    response_model=UnreadCountRead,
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def unread_count(claims: Claims, session: DbSession, dispatcher: Dispatcher) -> UnreadCountRead:
    return UnreadCountRead(count=dispatcher.unread_count(session, claims["sub"]))


@router.post(
    "/read-all",
    response_model=UnreadCountRead,
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def mark_all_read(claims: Claims, session: DbSession, dispatcher: Dispatcher) -> UnreadCountRead:
    dispatcher.mark_all_read(session, claims["sub"])
    return UnreadCountRead(count=0)


@router.post(
    "/{notification_id}/read",
    response_model=UnreadCountRead,
    dependencies=[Depends(require_perm(PERM_NOTIFICATION_READ))],
)
def mark_read(
    notification_id: int,
    claims: Claims,
    session: DbSession,
    dispatcher: Dispatcher,
) -> UnreadCountRead:
    if not dispatcher.mark_read(session, claims["sub"], notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification not found")
    return UnreadCountRead(count=dispatcher.unread_count(session, claims["sub"]))
