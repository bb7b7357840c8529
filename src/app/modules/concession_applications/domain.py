"""
Concession Application Record

Plain, storage-independent data types for the workflow. Records are frozen:
a transition produces a new Application, it never edits the loaded one.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from app.core.auth import ActorRole
from app.modules.concession_applications.errors import InvariantViolationError
from app.modules.concession_applications.workflow import (
    MILESTONE_FIELDS,
    MILESTONE_ORDER,
    PAYMENT_STATUSES,
    REJECTED_STATUSES,
    TERMINAL_STATUSES,
    ApplicationStatus,
    allowed_transitions,
)


@dataclass(frozen=True)
class PaymentDetails:
    """Snapshot of the student's fee payment."""

    transaction_id: str
    transaction_date: date
    account_holder: str
    amount: Decimal
    payment_method: str

    def problems(self) -> list[str]:
        """Validation problems, empty when the payment is acceptable."""
        problems = []
        for name in ("transaction_id", "account_holder", "payment_method"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                problems.append(f"{name} is required")
        if not isinstance(self.transaction_date, date):
            problems.append("transaction_date is required")
        try:
            if self.amount is None or Decimal(self.amount) <= 0:
                problems.append("amount must be greater than zero")
        except (InvalidOperation, TypeError, ValueError):
            problems.append("amount must be a number")
        return problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "transaction_date": self.transaction_date.isoformat(),
            "account_holder": self.account_holder,
            "amount": str(self.amount),
            "payment_method": self.payment_method,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentDetails":
        return cls(
            transaction_id=data["transaction_id"],
            transaction_date=date.fromisoformat(data["transaction_date"]),
            account_holder=data["account_holder"],
            amount=Decimal(data["amount"]),
            payment_method=data["payment_method"],
        )


# Milestones that must be set once an application has reached a status
_REQUIRED_MILESTONES: dict[ApplicationStatus, frozenset[str]] = {
    ApplicationStatus.PENDING: frozenset(),
    ApplicationStatus.COLLEGE_VERIFIED: frozenset({"college_verified_at"}),
    ApplicationStatus.COLLEGE_REJECTED: frozenset({"college_verified_at"}),
    ApplicationStatus.DEPOT_APPROVED: frozenset({"college_verified_at", "depot_approved_at"}),
    ApplicationStatus.DEPOT_REJECTED: frozenset({"college_verified_at", "depot_approved_at"}),
    ApplicationStatus.PAYMENT_PENDING: frozenset({"college_verified_at", "depot_approved_at"}),
    ApplicationStatus.PAYMENT_VERIFIED: frozenset(
        {"college_verified_at", "depot_approved_at", "payment_verified_at"}
    ),
    ApplicationStatus.ISSUED: frozenset(
        {"college_verified_at", "depot_approved_at", "payment_verified_at", "issued_at"}
    ),
}

_STAMPED_MILESTONES = frozenset(MILESTONE_FIELDS.values())


@dataclass(frozen=True)
class Application:
    """
    A student's concession application.

    Identity, parties, route and renewal flag never change after creation.
    `status` moves only through the transition executor, which also stamps
    the milestone timestamps and bumps `version` on every saved transition.
    The student contact fields are a snapshot taken at creation and are
    used for notifications only.
    """

    id: UUID
    student_id: UUID
    college_id: UUID
    depot_id: UUID
    start_point: str
    end_point: str
    application_date: datetime
    is_renewal: bool = False
    status: ApplicationStatus = ApplicationStatus.PENDING
    rejection_reason: str | None = None
    payment_details: PaymentDetails | None = None
    college_verified_at: datetime | None = None
    depot_approved_at: datetime | None = None
    payment_verified_at: datetime | None = None
    issued_at: datetime | None = None
    version: int = 0
    student_name: str | None = field(default=None, compare=False)
    student_email: str | None = field(default=None, compare=False)
    student_phone: str | None = field(default=None, compare=False)
    payment_reminder_sent_at: datetime | None = field(default=None, compare=False)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_be_acted_on_by(self, role: ActorRole) -> bool:
        """True if `role` has at least one legal move from the current status."""
        return bool(allowed_transitions(role, self.status))

    def owner_id_for(self, role: ActorRole) -> UUID:
        """The scope id an actor of `role` must hold to touch this application."""
        if role == ActorRole.STUDENT:
            return self.student_id
        if role == ActorRole.COLLEGE:
            return self.college_id
        return self.depot_id

    def milestones(self) -> list[tuple[str, datetime]]:
        """Set milestone timestamps in workflow order."""
        return [
            (name, getattr(self, name))
            for name in MILESTONE_ORDER
            if getattr(self, name) is not None
        ]

    def latest_milestone(self) -> datetime:
        return self.milestones()[-1][1]

    def invariant_violations(self) -> list[str]:
        """Describe every workflow invariant this record breaks."""
        violations = []

        if not isinstance(self.status, ApplicationStatus):
            return [f"unknown status {self.status!r}"]

        if self.status in REJECTED_STATUSES:
            if not self.rejection_reason:
                violations.append(f"{self.status.value} requires a rejection reason")
        elif self.rejection_reason is not None:
            violations.append(f"rejection reason set while {self.status.value}")

        if self.status in PAYMENT_STATUSES:
            if self.payment_details is None:
                violations.append(f"{self.status.value} requires payment details")
        elif self.payment_details is not None:
            violations.append(f"payment details set while {self.status.value}")

        required = _REQUIRED_MILESTONES[self.status]
        for name in _STAMPED_MILESTONES:
            is_set = getattr(self, name) is not None
            if name in required and not is_set:
                violations.append(f"{name} missing for {self.status.value}")
            elif name not in required and is_set:
                violations.append(f"{name} set before it was reached")

        stamps = self.milestones()
        for (earlier_name, earlier), (later_name, later) in zip(stamps, stamps[1:]):
            if later < earlier:
                violations.append(f"{later_name} is earlier than {earlier_name}")

        if self.version < 0:
            violations.append("version cannot be negative")

        return violations

    def assert_invariants(self) -> None:
        """Raise InvariantViolationError if the record is inconsistent."""
        violations = self.invariant_violations()
        if violations:
            raise InvariantViolationError(
                f"Application {self.id} is inconsistent: {'; '.join(violations)}"
            )


@dataclass(frozen=True)
class StatusChange:
    """One entry of an application's audit trail."""

    application_id: UUID
    from_status: ApplicationStatus | None
    to_status: ApplicationStatus
    actor_role: ActorRole
    actor_id: UUID
    changed_at: datetime
    reason: str | None = None
