from __future__ import annotations

from sqlmodel import Session, col, select

from asset_buddy.domain.models import ActivityLog

MESSAGE_MAX_LENGTH = 255


class ActivityLogService:
    def record(
        self,
        session: Session,
        *,
        action: str,
        entity_type: str,
        entity_id: str,
        message: str,
    ) -> ActivityLog:
        entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            message=message[:MESSAGE_MAX_LENGTH],
        )
        session.add(entry)
        return entry

    def recent(
        self,
        session: Session,
        *,
        limit: int = 20,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[ActivityLog]:
        statement = select(ActivityLog)
        if entity_type is not None:
            statement = statement.where(ActivityLog.entity_type == entity_type)
        if entity_id is not None:
            statement = statement.where(ActivityLog.entity_id == entity_id)
        statement = statement.order_by(col(ActivityLog.created_at).desc(), col(ActivityLog.id).desc()).limit(limit)
        return list(session.exec(statement).all())
