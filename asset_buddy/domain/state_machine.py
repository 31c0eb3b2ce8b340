from __future__ import annotations

from enum import StrEnum


class AssignmentStatus(StrEnum):
    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    ACTIVE = "ACTIVE"
    REFUSED = "REFUSED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_APPROVED = "RETURN_APPROVED"
    RETURN_REJECTED = "RETURN_REJECTED"
    CANCELLED = "CANCELLED"
    REVERTED = "REVERTED"


OPEN_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {
        AssignmentStatus.PENDING_ACCEPTANCE,
        AssignmentStatus.ACTIVE,
        AssignmentStatus.RETURN_REQUESTED,
        AssignmentStatus.RETURN_REJECTED,
    }
)

TERMINAL_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {
        AssignmentStatus.REFUSED,
        AssignmentStatus.RETURN_APPROVED,
        AssignmentStatus.CANCELLED,
        AssignmentStatus.REVERTED,
    }
)

# Revert on these is reported back as an already-finalized no-op.
FINALIZED_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {AssignmentStatus.REVERTED, AssignmentStatus.CANCELLED}
)

# Normal workflow only. Admin revert overrides any status outside FINALIZED_ASSIGNMENT_STATUSES.
ASSIGNMENT_ALLOWED_TRANSITIONS: dict[AssignmentStatus, set[AssignmentStatus]] = {
    AssignmentStatus.PENDING_ACCEPTANCE: {
        AssignmentStatus.ACTIVE,
        AssignmentStatus.REFUSED,
        AssignmentStatus.CANCELLED,
        AssignmentStatus.REVERTED,
    },
    AssignmentStatus.ACTIVE: {
        AssignmentStatus.RETURN_REQUESTED,
        AssignmentStatus.REVERTED,
    },
    AssignmentStatus.RETURN_REQUESTED: {
        AssignmentStatus.RETURN_APPROVED,
        AssignmentStatus.RETURN_REJECTED,
        AssignmentStatus.REVERTED,
    },
    AssignmentStatus.RETURN_REJECTED: {
        AssignmentStatus.RETURN_REQUESTED,
        AssignmentStatus.REVERTED,
    },
    AssignmentStatus.REFUSED: set(),
    AssignmentStatus.RETURN_APPROVED: set(),
    AssignmentStatus.CANCELLED: set(),
    AssignmentStatus.REVERTED: set(),
}


def can_transition(source: AssignmentStatus, target: AssignmentStatus) -> bool:
    return target in ASSIGNMENT_ALLOWED_TRANSITIONS.get(source, set())


def is_open(status: AssignmentStatus) -> bool:
    return status in OPEN_ASSIGNMENT_STATUSES
