from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from sqlmodel import Session

from asset_buddy.domain.models import EventEnvelope, EventRecord
from asset_buddy.infra.db import engine

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def record(self, event: EventEnvelope, session: Session) -> None:
        session.add(
            EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
        )

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            self.record(event, session)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        self.dispatch(event)

    def dispatch(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event subscriber failed event=%s event_id=%s handler=%r",
                    event.event_type,
                    event.event_id,
                    handler,
                )


event_bus = EventBus()
