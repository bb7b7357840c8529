"""
Fixtures for concession applications tests.
"""

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.core.auth import Actor, ActorRole
from app.modules.concession_applications.domain import (
    Application,
    PaymentDetails,
    StatusChange,
)
from app.modules.concession_applications.executor import ApplicationLocks, TransitionExecutor
from app.modules.concession_applications.notifications import StatusChangedEvent
from app.modules.concession_applications.repository import InMemoryApplicationRepository
from app.modules.concession_applications.workflow import ApplicationStatus

SUBMITTED_AT = datetime(2026, 6, 1, 9, 0, tzinfo=UTC)


class FixedClock:
    """Clock returning a settable time; advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Collects published events instead of sending anything."""

    def __init__(self):
        self.events: list[StatusChangedEvent] = []

    async def notify(self, event: StatusChangedEvent) -> None:
        self.events.append(event)


class FailingDispatcher:
    async def notify(self, event: StatusChangedEvent) -> None:
        raise RuntimeError("mail server down")


@pytest.fixture
def student_id():
    return uuid4()


@pytest.fixture
def college_id():
    return uuid4()


@pytest.fixture
def depot_id():
    return uuid4()


@pytest.fixture
def student(student_id, college_id):
    return Actor(
        id=uuid4(),
        role=ActorRole.STUDENT,
        scope_id=student_id,
        name="Anjali Nair",
        email="anjali@student.test",
        phone="+919876543210",
        college_id=college_id,
    )


@pytest.fixture
def college(college_id):
    return Actor(id=uuid4(), role=ActorRole.COLLEGE, scope_id=college_id, name="College Office")


@pytest.fixture
def depot(depot_id):
    return Actor(id=uuid4(), role=ActorRole.DEPOT, scope_id=depot_id, name="Depot Clerk")


@pytest.fixture
def clock():
    return FixedClock(SUBMITTED_AT + timedelta(hours=1))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def repository():
    return InMemoryApplicationRepository()


@pytest.fixture
def executor(repository, dispatcher, clock):
    return TransitionExecutor(repository, dispatcher, clock=clock, locks=ApplicationLocks())


@pytest.fixture
def payment():
    return PaymentDetails(
        transaction_id="TXN-20260601-001",
        transaction_date=date(2026, 6, 2),
        account_holder="Anjali Nair",
        amount=Decimal("450.00"),
        payment_method="UPI",
    )


@pytest.fixture
def pending_application(student_id, college_id, depot_id):
    return Application(
        id=uuid4(),
        student_id=student_id,
        college_id=college_id,
        depot_id=depot_id,
        start_point="Thampanoor",
        end_point="Kazhakkoottam",
        application_date=SUBMITTED_AT,
        student_name="Anjali Nair",
        student_email="anjali@student.test",
    )


@pytest.fixture
def make_application(pending_application, payment):
    """
    Build a consistent application in any status, with milestones one hour apart.
    """

    def _make(status: ApplicationStatus, **overrides) -> Application:
        stamps = {
            "college_verified_at": SUBMITTED_AT + timedelta(minutes=10),
            "depot_approved_at": SUBMITTED_AT + timedelta(minutes=20),
            "payment_verified_at": SUBMITTED_AT + timedelta(minutes=30),
            "issued_at": SUBMITTED_AT + timedelta(minutes=40),
        }
        reached = {
            ApplicationStatus.PENDING: [],
            ApplicationStatus.COLLEGE_VERIFIED: ["college_verified_at"],
            ApplicationStatus.COLLEGE_REJECTED: ["college_verified_at"],
            ApplicationStatus.DEPOT_APPROVED: ["college_verified_at", "depot_approved_at"],
            ApplicationStatus.DEPOT_REJECTED: ["college_verified_at", "depot_approved_at"],
            ApplicationStatus.PAYMENT_PENDING: ["college_verified_at", "depot_approved_at"],
            ApplicationStatus.PAYMENT_VERIFIED: [
                "college_verified_at",
                "depot_approved_at",
                "payment_verified_at",
            ],
            ApplicationStatus.ISSUED: list(stamps),
        }[status]

        fields: dict = {name: stamps[name] for name in reached}
        fields["status"] = status
        if status in (ApplicationStatus.COLLEGE_REJECTED, ApplicationStatus.DEPOT_REJECTED):
            fields["rejection_reason"] = "Not enrolled"
        if status in (
            ApplicationStatus.PAYMENT_PENDING,
            ApplicationStatus.PAYMENT_VERIFIED,
            ApplicationStatus.ISSUED,
        ):
            fields["payment_details"] = payment
        fields.update(overrides)
        return replace(pending_application, **fields)

    return _make


@pytest.fixture
def store(repository, student):
    """Insert an application into the in-memory repository."""

    async def _store(application: Application) -> Application:
        change = StatusChange(
            application_id=application.id,
            from_status=None,
            to_status=ApplicationStatus.PENDING,
            actor_role=ActorRole.STUDENT,
            actor_id=student.id,
            changed_at=application.application_date,
        )
        return await repository.create(application, change)

    return _store


@pytest.fixture
def failing_dispatcher():
    return FailingDispatcher()


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db
