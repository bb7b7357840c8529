"""
Concession Workflow Definitions

Statuses, the role-gated transition table and the milestone mapping.
Everything here is static data; nothing depends on storage or HTTP.

Workflow:
    pending --college--> college_verified | college_rejected
    college_verified --depot--> depot_approved | depot_rejected
    depot_approved --student (payment)--> payment_pending
    payment_pending --depot--> payment_verified
    payment_verified --depot--> issued
"""

import enum
from types import MappingProxyType

from app.core.auth import ActorRole


class ApplicationStatus(str, enum.Enum):
    """Workflow position of a concession application."""

    PENDING = "pending"
    COLLEGE_VERIFIED = "college_verified"
    COLLEGE_REJECTED = "college_rejected"
    DEPOT_APPROVED = "depot_approved"
    DEPOT_REJECTED = "depot_rejected"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_VERIFIED = "payment_verified"
    ISSUED = "issued"


TERMINAL_STATUSES = frozenset(
    {
        ApplicationStatus.COLLEGE_REJECTED,
        ApplicationStatus.DEPOT_REJECTED,
        ApplicationStatus.ISSUED,
    }
)

REJECTED_STATUSES = frozenset(
    {
        ApplicationStatus.COLLEGE_REJECTED,
        ApplicationStatus.DEPOT_REJECTED,
    }
)

# Statuses in which payment details are on record
PAYMENT_STATUSES = frozenset(
    {
        ApplicationStatus.PAYMENT_PENDING,
        ApplicationStatus.PAYMENT_VERIFIED,
        ApplicationStatus.ISSUED,
    }
)

_NONE: frozenset[ApplicationStatus] = frozenset()


def _table(
    entries: dict[ApplicationStatus, frozenset[ApplicationStatus]],
) -> MappingProxyType:
    return MappingProxyType({status: entries.get(status, _NONE) for status in ApplicationStatus})


TRANSITION_TABLE: MappingProxyType = MappingProxyType(
    {
        ActorRole.COLLEGE: _table(
            {
                ApplicationStatus.PENDING: frozenset(
                    {ApplicationStatus.COLLEGE_VERIFIED, ApplicationStatus.COLLEGE_REJECTED}
                ),
            }
        ),
        ActorRole.DEPOT: _table(
            {
                ApplicationStatus.COLLEGE_VERIFIED: frozenset(
                    {ApplicationStatus.DEPOT_APPROVED, ApplicationStatus.DEPOT_REJECTED}
                ),
                ApplicationStatus.PAYMENT_PENDING: frozenset({ApplicationStatus.PAYMENT_VERIFIED}),
                ApplicationStatus.PAYMENT_VERIFIED: frozenset({ApplicationStatus.ISSUED}),
            }
        ),
        ActorRole.STUDENT: _table(
            {
                ApplicationStatus.DEPOT_APPROVED: frozenset({ApplicationStatus.PAYMENT_PENDING}),
            }
        ),
    }
)

# Milestone timestamp stamped when a transition lands on the status.
# PAYMENT_PENDING records payment details only.
MILESTONE_FIELDS: MappingProxyType = MappingProxyType(
    {
        ApplicationStatus.COLLEGE_VERIFIED: "college_verified_at",
        ApplicationStatus.COLLEGE_REJECTED: "college_verified_at",
        ApplicationStatus.DEPOT_APPROVED: "depot_approved_at",
        ApplicationStatus.DEPOT_REJECTED: "depot_approved_at",
        ApplicationStatus.PAYMENT_VERIFIED: "payment_verified_at",
        ApplicationStatus.ISSUED: "issued_at",
    }
)

# Workflow order of the timestamps; each must be >= the ones before it
MILESTONE_ORDER = (
    "application_date",
    "college_verified_at",
    "depot_approved_at",
    "payment_verified_at",
    "issued_at",
)


def allowed_transitions(role: ActorRole, status: ApplicationStatus) -> frozenset[ApplicationStatus]:
    """Statuses `role` may request for an application currently in `status`."""
    return TRANSITION_TABLE[role][status]


def acting_role_for(status: ApplicationStatus) -> ActorRole | None:
    """The role whose move it is at `status`, or None for terminal statuses."""
    for role, table in TRANSITION_TABLE.items():
        if table[status]:
            return role
    return None


def milestone_field_for(status: ApplicationStatus) -> str | None:
    return MILESTONE_FIELDS.get(status)


def _check_table() -> None:
    """Fail at import time if the table stops being exhaustive or exclusive."""
    for role in ActorRole:
        if role not in TRANSITION_TABLE:
            raise RuntimeError(f"Transition table has no entry for role {role.value}")
        missing = set(ApplicationStatus) - set(TRANSITION_TABLE[role])
        if missing:
            raise RuntimeError(f"Transition table for {role.value} misses {sorted(missing)}")

    for status in ApplicationStatus:
        actors = [role for role in ActorRole if TRANSITION_TABLE[role][status]]
        if len(actors) > 1:
            raise RuntimeError(f"Status {status.value} is actionable by several roles: {actors}")
        if status in TERMINAL_STATUSES and actors:
            raise RuntimeError(f"Terminal status {status.value} has outgoing transitions")
        if status not in TERMINAL_STATUSES and not actors:
            raise RuntimeError(f"Non-terminal status {status.value} has no acting role")


_check_table()
