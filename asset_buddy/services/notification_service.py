from __future__ import annotations

import logging

from sqlalchemy import func
from sqlmodel import Session, col, select

from asset_buddy.domain.models import Notification, now_utc

logger = logging.getLogger(__name__)

ENTITY_ASSIGNMENT = "ASSIGNMENT"
TYPE_PENDING_ACCEPTANCE = "ASSIGNMENT_PENDING_ACCEPTANCE"
TYPE_AWAITING_ACCEPTANCE = "ASSIGNMENT_AWAITING_ACCEPTANCE"
ACCEPTANCE_NOTIFICATION_TYPES = (TYPE_PENDING_ACCEPTANCE, TYPE_AWAITING_ACCEPTANCE)
DEFAULT_LIST_LIMIT = 30


class NotificationDispatcher:
    def _stage(
        self,
        session: Session,
        *,
        recipient_user_id: str,
        title: str,
        notification_type: str,
        entity_id: str,
        message: str,
    ) -> Notification | None:
        existing = session.exec(
            select(Notification)
            .where(Notification.recipient_user_id == recipient_user_id)
            .where(Notification.type == notification_type)
            .where(Notification.entity_type == ENTITY_ASSIGNMENT)
            .where(Notification.entity_id == entity_id)
        ).first()
        if existing is not None:
            return None
        notification = Notification(
            recipient_user_id=recipient_user_id,
            title=title,
            type=notification_type,
            entity_type=ENTITY_ASSIGNMENT,
            entity_id=entity_id,
            message=message,
        )
        session.add(notification)
        return notification

    def notify_pending_acceptance(
        self,
        session: Session,
        *,
        assignment_id: str,
        receiver_user_id: str,
        asset_tag: str,
    ) -> Notification | None:
        return self._stage(
            session,
            recipient_user_id=receiver_user_id,
            title="Assignment Pending Acceptance",
            notification_type=TYPE_PENDING_ACCEPTANCE,
            entity_id=assignment_id,
            message=f"Assignment {asset_tag} is pending your acceptance",
        )

    def notify_awaiting_acceptance(
        self,
        session: Session,
        *,
        assignment_id: str,
        admin_user_id: str,
        asset_tag: str,
    ) -> Notification | None:
        return self._stage(
            session,
            recipient_user_id=admin_user_id,
            title="Assignment Awaiting Acceptance",
            notification_type=TYPE_AWAITING_ACCEPTANCE,
            entity_id=assignment_id,
            message=f"Assignment {asset_tag} is awaiting staff acceptance",
        )

    def mark_assignment_notifications_read(self, session: Session, assignment_id: str) -> int:
        rows = session.exec(
            select(Notification)
            .where(Notification.entity_type == ENTITY_ASSIGNMENT)
            .where(Notification.entity_id == assignment_id)
            .where(col(Notification.type).in_(ACCEPTANCE_NOTIFICATION_TYPES))
            .where(col(Notification.is_read).is_(False))
        ).all()
        for row in rows:
            row.is_read = True
            row.updated_at = now_utc()
            session.add(row)
        return len(rows)

    def list_for_user(self, session: Session, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Notification]:
        statement = (
            select(Notification)
            .where(Notification.recipient_user_id == user_id)
            .order_by(col(Notification.is_read), col(Notification.created_at).desc())
            .limit(limit)
        )
        rows = list(session.exec(statement).all())
        logger.debug("notifications listed user_id=%s rows=%s", user_id, len(rows))
        return rows

    def unread_count(self, session: Session, user_id: str) -> int:
        count = session.exec(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_user_id == user_id)
            .where(col(Notification.is_read).is_(False))
        ).one()
        return int(count)

    def mark_read(self, session: Session, user_id: str, notification_id: int) -> bool:
        notification = session.get(Notification, notification_id)
        if notification is None or notification.recipient_user_id != user_id:
            return False
        if not notification.is_read:
            notification.is_read = True
            notification.updated_at = now_utc()
            session.add(notification)
            session.commit()
        return True

    def mark_all_read(self, session: Session, user_id: str) -> int:
        rows = session.exec(
            select(Notification)
            .where(Notification.recipient_user_id == user_id)
            .where(col(Notification.is_read).is_(False))
        ).all()
        for row in rows:
            row.is_read = True
            row.updated_at = now_utc()
            session.add(row)
        session.commit()
        return len(rows)
