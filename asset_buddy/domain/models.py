from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from asset_buddy.domain.state_machine import OPEN_ASSIGNMENT_STATUSES, AssignmentStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


OPEN_ASSIGNMENT_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{item.value}'" for item in sorted(OPEN_ASSIGNMENT_STATUSES))
)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AssetType(StrEnum):
    LAPTOP = "LAPTOP"
    PRINTER = "PRINTER"
    SWITCH = "SWITCH"
    ROUTER = "ROUTER"
    DESKTOP = "DESKTOP"
    PDA = "PDA"
    HCS_CRANE_SCALE = "HCS_CRANE_SCALE"
    MOBILE_PHONE = "MOBILE_PHONE"
    SYSTEM_UNIT = "SYSTEM_UNIT"
    MONITOR = "MONITOR"
    KEYBOARD = "KEYBOARD"
    MOUSE = "MOUSE"
    HEADSET = "HEADSET"


class AssetStatus(StrEnum):
    IN_STOCK = "IN_STOCK"
    ASSIGNED = "ASSIGNED"
    IN_REPAIR = "IN_REPAIR"
    RETIRED = "RETIRED"


class NextAssetStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    UNDER_REPAIR = "UNDER_REPAIR"


class AssignmentTargetType(StrEnum):
    STAFF = "STAFF"
    LOCATION = "LOCATION"
    DEPARTMENT = "DEPARTMENT"


class Asset(SQLModel, table=True):
    __tablename__ = "assets"

    id: int | None = Field(default=None, primary_key=True)
    asset_tag: str = Field(index=True, unique=True)
    asset_type: AssetType = Field(index=True)
    brand: str
    model: str
    status: AssetStatus = Field(default=AssetStatus.IN_STOCK, index=True)
    location: str
    department: str | None = Field(default=None, index=True)
    serial_number: str | None = Field(default=None, index=True)
    imei_no: str | None = None
    specifications: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Assignment(SQLModel, table=True):
    __tablename__ = "assignments"
    __table_args__ = (
        Index(
            "uq_assignments_open_asset",
            "asset_id",
            unique=True,
            sqlite_where=text(OPEN_ASSIGNMENT_STATUS_SQL),
            postgresql_where=text(OPEN_ASSIGNMENT_STATUS_SQL),
        ),
        Index("ix_assignments_asset_recency", "asset_id", "assigned_date", "created_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    asset_id: int = Field(foreign_key="assets.id", index=True)
    target_type: AssignmentTargetType = Field(default=AssignmentTargetType.STAFF)
    staff_id: str | None = Field(default=None, index=True)
    receiver_user_id: str | None = Field(default=None, index=True)
    location: str | None = None
    department: str | None = None
    assigned_by: str = Field(index=True)
    assigned_date: datetime = Field(default_factory=now_utc)
    status: AssignmentStatus = Field(default=AssignmentStatus.PENDING_ACCEPTANCE, index=True)

    terms_version: str | None = None
    terms_accepted: bool = Field(default=False)
    terms_accepted_at: datetime | None = None
    accepted_by_user_id: str | None = None
    accepted_at: datetime | None = None
    refused_at: datetime | None = None
    refused_reason: str | None = None
    return_requested_at: datetime | None = None
    return_requested_by_user_id: str | None = None
    return_approved_at: datetime | None = None
    return_approved_by_admin_id: str | None = None
    return_rejected_at: datetime | None = None
    return_rejected_reason: str | None = None
    reverted_at: datetime | None = None
    reverted_by_user_id: str | None = Field(default=None, index=True)
    revert_reason: str | None = None

    issue_condition: dict[str, str] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    return_condition: dict[str, str] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    accessories_issued: list[str] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    accessories_returned: list[str] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    returned_date: datetime | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ActivityLog(SQLModel, table=True):
    __tablename__ = "asset_activity_logs"
    __table_args__ = (Index("ix_asset_activity_entity", "entity_type", "entity_id"),)

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(max_length=50)
    entity_type: str = Field(max_length=50)
    entity_id: str = Field(max_length=64)
    message: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "recipient_user_id",
            "type",
            "entity_type",
            "entity_id",
            name="uq_notifications_recipient_type_entity",
        ),
        Index("ix_notifications_recipient_unread", "recipient_user_id", "is_read"),
        Index("ix_notifications_entity", "entity_type", "entity_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    recipient_user_id: str = Field(index=True)
    title: str = Field(max_length=120)
    type: str = Field(max_length=50)
    entity_type: str = Field(max_length=50)
    entity_id: str = Field(max_length=64)
    message: str = Field(max_length=255)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AssetCreate(BaseModel):
    asset_tag: str = PydanticField(min_length=1, max_length=64)
    asset_type: AssetType
    brand: str
    model: str
    location: str
    department: str | None = None
    serial_number: str | None = None
    imei_no: str | None = None
    specifications: str | None = None
    notes: str | None = None


class AssetStatusUpdateRequest(BaseModel):
    status: AssetStatus

    @field_validator("status")
    @classmethod
    def _check_manual_status(cls, value: AssetStatus) -> AssetStatus:
        if value == AssetStatus.ASSIGNED:
            raise ValueError("ASSIGNED is derived from assignments and cannot be set manually")
        return value


class AssetRead(ORMReadModel):
    id: int
    asset_tag: str
    asset_type: AssetType
    brand: str
    model: str
    status: AssetStatus
    location: str
    department: str | None
    serial_number: str | None
    imei_no: str | None
    specifications: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class AssignmentCreate(BaseModel):
    asset_id: int
    target_type: AssignmentTargetType = AssignmentTargetType.STAFF
    staff_id: str | None = None
    receiver_user_id: str | None = None
    location: str | None = None
    department: str | None = None
    assigned_date: datetime = PydanticField(default_factory=now_utc)
    issue_condition: dict[str, str] | None = None
    accessories_issued: list[str] | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _check_target(self) -> AssignmentCreate:
        if self.target_type == AssignmentTargetType.STAFF:
            if not self.staff_id or not self.receiver_user_id:
                raise ValueError("staff target requires staff_id and receiver_user_id")
            if self.location is not None or self.department is not None:
                raise ValueError("staff target cannot carry location or department")
        elif self.target_type == AssignmentTargetType.LOCATION:
            if not self.location:
                raise ValueError("location target requires location")
            if self.staff_id is not None or self.department is not None:
                raise ValueError("location target cannot carry staff_id or department")
        elif self.target_type == AssignmentTargetType.DEPARTMENT:
            if not self.department:
                raise ValueError("department target requires department")
            if self.staff_id is not None or self.location is not None:
                raise ValueError("department target cannot carry staff_id or location")
        return self


class AcceptAssignmentRequest(BaseModel):
    terms_accepted: bool
    terms_version: str = PydanticField(min_length=1, max_length=20)
    accepted_terms: list[bool]


class RefuseAssignmentRequest(BaseModel):
    reason: str | None = PydanticField(default=None, max_length=255)


class ReturnRequest(BaseModel):
    return_condition: dict[str, str] | None = None
    accessories_returned: list[str] | None = None


class ApproveReturnRequest(BaseModel):
    final_return_condition: dict[str, str]
    final_accessories_returned: list[str]
    decision_note: str | None = PydanticField(default=None, max_length=500)
    next_asset_status: NextAssetStatus


class RejectReturnRequest(BaseModel):
    reason: str = PydanticField(min_length=1, max_length=255)


class RevertAssignmentRequest(BaseModel):
    reason: str | None = PydanticField(default=None, max_length=500)


class AssignmentRead(ORMReadModel):
    id: str
    asset_id: int
    target_type: AssignmentTargetType
    staff_id: str | None
    receiver_user_id: str | None
    location: str | None
    department: str | None
    assigned_by: str
    assigned_date: datetime
    status: AssignmentStatus
    terms_version: str | None
    terms_accepted: bool
    terms_accepted_at: datetime | None
    accepted_by_user_id: str | None
    accepted_at: datetime | None
    refused_at: datetime | None
    refused_reason: str | None
    return_requested_at: datetime | None
    return_requested_by_user_id: str | None
    return_approved_at: datetime | None
    return_approved_by_admin_id: str | None
    return_rejected_at: datetime | None
    return_rejected_reason: str | None
    reverted_at: datetime | None
    reverted_by_user_id: str | None
    revert_reason: str | None
    issue_condition: dict[str, str] | None
    return_condition: dict[str, str] | None
    accessories_issued: list[str] | None
    accessories_returned: list[str] | None
    returned_date: datetime | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class RevertAssignmentRead(BaseModel):
    assignment: AssignmentRead
    already_finalized: bool


class AssignmentStatusCountRead(BaseModel):
    status: AssignmentStatus
    count: int


class NotificationRead(ORMReadModel):
    id: int
    recipient_user_id: str
    title: str
    type: str
    entity_type: str
    entity_id: str
    message: str
    is_read: bool
    created_at: datetime


class UnreadCountRead(BaseModel):
    count: int


class ActivityLogRead(ORMReadModel):
    id: int
    action: str
    entity_type: str
    entity_id: str
    message: str
    created_at: datetime
