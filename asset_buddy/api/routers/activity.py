from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from asset_buddy.api.deps import require_perm
from asset_buddy.domain.models import ActivityLogRead
from asset_buddy.domain.permissions import PERM_ASSET_READ
from asset_buddy.infra.db import get_session
from asset_buddy.services.activity_log_service import ActivityLogService

router = APIRouter()


def get_activity_log() -> ActivityLogService:
    return ActivityLogService()


@router.get(
    "",
    response_model=list[ActivityLogRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def recent_activity(
    session: Annotated[Session, Depends(get_session)],
    activity_log: Annotated[ActivityLogService, Depends(get_activity_log)],
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> list[ActivityLogRead]:
    rows = activity_log.recent(session, limit=limit, entity_type=entity_type, entity_id=entity_id)
    return [ActivityLogRead.model_validate(item) for item in rows]
