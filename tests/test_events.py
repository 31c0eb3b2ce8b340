from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from asset_buddy.domain.models import (
    Asset,
    AssetType,
    AssignmentCreate,
    EventEnvelope,
    EventRecord,
)
from asset_buddy.infra.events import EventBus
from asset_buddy.services import assignment_service
from asset_buddy.services.assignment_service import AssignmentService


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="assignment.created",
        actor_id="admin-1",
        payload={"assignment_id": "assignment-1"},
    )
    bus.subscribe("assignment.created", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert seen == [event.event_id]


def test_lifecycle_events_reach_wildcard_subscribers(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[EventEnvelope] = []
    bus.subscribe("*", seen.append)
    monkeypatch.setattr(assignment_service, "event_bus", bus)

    with Session(engine, expire_on_commit=False) as session:
        asset = Asset(asset_tag="LT-0001", asset_type=AssetType.LAPTOP, brand="HP", model="840", location="HQ")
        session.add(asset)
        session.commit()
        service = AssignmentService()
        assignment = service.create_assignment(
            session,
            "admin-1",
            AssignmentCreate(asset_id=asset.id, staff_id="S-001", receiver_user_id="user-1"),  # type: ignore[arg-type]
        )
        service.cancel_pending_assignment(session, assignment.id, "admin-1")

    assert [event.event_type for event in seen] == ["assignment.created", "assignment.cancelled"]
    assert seen[0].actor_id == "admin-1"
    assert seen[0].payload["assignment_id"] == assignment.id
    assert seen[1].payload["status"] == "CANCELLED"


def test_failing_subscriber_does_not_block_others() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[str] = []

    def broken(_event: EventEnvelope) -> None:
        raise RuntimeError("handler crashed")

    bus.subscribe("assignment.created", broken)
    bus.subscribe("*", lambda event: seen.append(event.event_id))
    event = EventEnvelope(event_type="assignment.created", payload={"assignment_id": "assignment-2"})

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()
    assert [row.event_id for row in stored] == [event.event_id]
    assert seen == [event.event_id]
