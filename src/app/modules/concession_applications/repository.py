"""
Concession Application Repository

Storage contract for the workflow plus two backends:

- SqlAlchemyApplicationRepository: PostgreSQL via async SQLAlchemy
- InMemoryApplicationRepository: process-local dicts for development and tests

Both backends apply a status change as one guarded write: the record is only
updated if it still has the status and version the caller loaded, and the
audit-trail entry is stored in the same transaction.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import ActorRole
from app.modules.concession_applications.domain import (
    Application,
    PaymentDetails,
    StatusChange,
)
from app.modules.concession_applications.models import (
    ONE_OPEN_PER_STUDENT_INDEX,
    ApplicationStatusHistory,
    ConcessionApplication,
)
from app.modules.concession_applications.workflow import (
    TERMINAL_STATUSES,
    ApplicationStatus,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when the storage backend fails. Nothing was written."""


class DuplicateOpenApplicationError(RepositoryError):
    """Raised when the student already has an open application in storage."""


class ConcurrentModificationError(RepositoryError):
    """Raised when the stored record no longer matches the expected status/version."""

    def __init__(
        self,
        application_id: UUID,
        expected_status: ApplicationStatus,
        expected_version: int,
    ):
        self.application_id = application_id
        self.expected_status = expected_status
        self.expected_version = expected_version
        super().__init__(
            f"Application {application_id} is no longer {expected_status.value} "
            f"at version {expected_version}"
        )


class ApplicationRepository(Protocol):
    """What the workflow needs from storage."""

    async def get(self, application_id: UUID) -> Application | None: ...

    async def create(self, application: Application, change: StatusChange) -> Application: ...

    async def save_transition(
        self,
        updated: Application,
        expected_status: ApplicationStatus,
        expected_version: int,
        change: StatusChange,
    ) -> Application: ...

    async def list_for_actor(
        self,
        role: ActorRole,
        scope_id: UUID,
        status: ApplicationStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Application], int]: ...

    async def history(self, application_id: UUID) -> list[StatusChange]: ...

    async def find_active_for_student(self, student_id: UUID) -> Application | None: ...

    async def list_awaiting_payment(self, approved_before: datetime) -> list[Application]: ...

    async def mark_payment_reminder_sent(
        self, application_id: UUID, sent_at: datetime
    ) -> None: ...


# ============================================
# Row mapping
# ============================================


def _to_domain(row: ConcessionApplication) -> Application:
    return Application(
        id=row.id,
        student_id=row.student_id,
        college_id=row.college_id,
        depot_id=row.depot_id,
        start_point=row.start_point,
        end_point=row.end_point,
        application_date=row.application_date,
        is_renewal=row.is_renewal,
        status=ApplicationStatus(row.status),
        rejection_reason=row.rejection_reason,
        payment_details=(
            PaymentDetails.from_dict(row.payment_details) if row.payment_details else None
        ),
        college_verified_at=row.college_verified_at,
        depot_approved_at=row.depot_approved_at,
        payment_verified_at=row.payment_verified_at,
        issued_at=row.issued_at,
        version=row.version,
        student_name=row.student_name,
        student_email=row.student_email,
        student_phone=row.student_phone,
        payment_reminder_sent_at=row.payment_reminder_sent_at,
    )


def _workflow_values(application: Application) -> dict:
    """Columns a status change may write."""
    return {
        "status": application.status,
        "version": application.version,
        "rejection_reason": application.rejection_reason,
        "payment_details": (
            application.payment_details.to_dict() if application.payment_details else None
        ),
        "college_verified_at": application.college_verified_at,
        "depot_approved_at": application.depot_approved_at,
        "payment_verified_at": application.payment_verified_at,
        "issued_at": application.issued_at,
    }


def _history_row(change: StatusChange) -> ApplicationStatusHistory:
    return ApplicationStatusHistory(
        application_id=change.application_id,
        from_status=change.from_status,
        to_status=change.to_status,
        actor_role=change.actor_role,
        actor_id=change.actor_id,
        reason=change.reason,
        changed_at=change.changed_at,
    )


def _history_to_domain(row: ApplicationStatusHistory) -> StatusChange:
    return StatusChange(
        application_id=row.application_id,
        from_status=ApplicationStatus(row.from_status) if row.from_status else None,
        to_status=ApplicationStatus(row.to_status),
        actor_role=ActorRole(row.actor_role),
        actor_id=row.actor_id,
        changed_at=row.changed_at,
        reason=row.reason,
    )


_SCOPE_COLUMNS = {
    ActorRole.STUDENT: ConcessionApplication.student_id,
    ActorRole.COLLEGE: ConcessionApplication.college_id,
    ActorRole.DEPOT: ConcessionApplication.depot_id,
}


# ============================================
# SQLAlchemy backend
# ============================================


class SqlAlchemyApplicationRepository:
    """Application storage on an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, application_id: UUID) -> Application | None:
        try:
            row = await self.db.get(
                ConcessionApplication, application_id, populate_existing=True
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not load application {application_id}") from e
        return _to_domain(row) if row else None

    async def create(self, application: Application, change: StatusChange) -> Application:
        row = ConcessionApplication(
            id=application.id,
            student_id=application.student_id,
            college_id=application.college_id,
            depot_id=application.depot_id,
            start_point=application.start_point,
            end_point=application.end_point,
            is_renewal=application.is_renewal,
            application_date=application.application_date,
            student_name=application.student_name,
            student_email=application.student_email,
            student_phone=application.student_phone,
            **_workflow_values(application),
        )
        try:
            self.db.add(row)
            # Flush the parent first so the history foreign key resolves
            await self.db.flush()
            self.db.add(_history_row(change))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if ONE_OPEN_PER_STUDENT_INDEX in str(e.orig):
                raise DuplicateOpenApplicationError(
                    f"Student {application.student_id} already has an open application"
                ) from e
            logger.error(f"Integrity error creating application {application.id}: {e}")
            raise RepositoryError(f"Could not create application {application.id}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create application {application.id}: {e}")
            raise RepositoryError(f"Could not create application {application.id}") from e

        await self.db.refresh(row)
        return _to_domain(row)

    async def save_transition(
        self,
        updated: Application,
        expected_status: ApplicationStatus,
        expected_version: int,
        change: StatusChange,
    ) -> Application:
        """
        Write a status change if nobody else changed the record first.

        Raises:
            ConcurrentModificationError: No row matched id, status and version
            RepositoryError: The database rejected the write
        """
        stmt = (
            update(ConcessionApplication)
            .where(
                ConcessionApplication.id == updated.id,
                ConcessionApplication.status == expected_status,
                ConcessionApplication.version == expected_version,
            )
            .values(**_workflow_values(updated))
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.db.execute(stmt)
            if result.rowcount != 1:
                await self.db.rollback()
                raise ConcurrentModificationError(updated.id, expected_status, expected_version)

            self.db.add(_history_row(change))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to save transition for application {updated.id}: {e}")
            raise RepositoryError(f"Could not save application {updated.id}") from e

        return updated

    async def list_for_actor(
        self,
        role: ActorRole,
        scope_id: UUID,
        status: ApplicationStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Application], int]:
        """
        Applications visible to an actor, newest first.

        Returns:
            (applications, total matching count)
        """
        conditions = [_SCOPE_COLUMNS[role] == scope_id]
        if status is not None:
            conditions.append(ConcessionApplication.status == status)

        count_query = select(func.count()).select_from(ConcessionApplication).where(*conditions)
        query = (
            select(ConcessionApplication)
            .where(*conditions)
            .order_by(ConcessionApplication.application_date.desc())
            .offset(skip)
            .limit(limit)
        )

        try:
            total = (await self.db.execute(count_query)).scalar_one()
            rows = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not list applications for {role.value} {scope_id}") from e

        return [_to_domain(row) for row in rows], total

    async def history(self, application_id: UUID) -> list[StatusChange]:
        query = (
            select(ApplicationStatusHistory)
            .where(ApplicationStatusHistory.application_id == application_id)
            .order_by(ApplicationStatusHistory.changed_at.asc())
        )
        try:
            rows = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not load history of {application_id}") from e
        return [_history_to_domain(row) for row in rows]

    async def find_active_for_student(self, student_id: UUID) -> Application | None:
        query = (
            select(ConcessionApplication)
            .where(
                ConcessionApplication.student_id == student_id,
                ConcessionApplication.status.not_in(list(TERMINAL_STATUSES)),
            )
            .limit(1)
        )
        try:
            row = (await self.db.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not look up applications of {student_id}") from e
        return _to_domain(row) if row else None

    async def list_awaiting_payment(self, approved_before: datetime) -> list[Application]:
        """Depot-approved applications older than the cutoff that were never reminded."""
        query = select(ConcessionApplication).where(
            ConcessionApplication.status == ApplicationStatus.DEPOT_APPROVED,
            ConcessionApplication.depot_approved_at <= approved_before,
            ConcessionApplication.payment_reminder_sent_at.is_(None),
        )
        try:
            rows = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError("Could not list applications awaiting payment") from e
        return [_to_domain(row) for row in rows]

    async def mark_payment_reminder_sent(self, application_id: UUID, sent_at: datetime) -> None:
        stmt = (
            update(ConcessionApplication)
            .where(ConcessionApplication.id == application_id)
            .values(payment_reminder_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryError(f"Could not mark reminder for {application_id}") from e


# ============================================
# In-memory backend
# ============================================


class InMemoryApplicationRepository:
    """
    Dict-backed storage with the same guarded-write semantics.

    Each method runs without awaiting in between reads and writes, so every
    call is atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._applications: dict[UUID, Application] = {}
        self._history: dict[UUID, list[StatusChange]] = {}

    async def get(self, application_id: UUID) -> Application | None:
        return self._applications.get(application_id)

    async def create(self, application: Application, change: StatusChange) -> Application:
        if application.id in self._applications:
            raise RepositoryError(f"Application {application.id} already exists")
        if not application.is_terminal() and any(
            existing.student_id == application.student_id and not existing.is_terminal()
            for existing in self._applications.values()
        ):
            raise DuplicateOpenApplicationError(
                f"Student {application.student_id} already has an open application"
            )
        self._applications[application.id] = application
        self._history[application.id] = [change]
        return application

    async def save_transition(
        self,
        updated: Application,
        expected_status: ApplicationStatus,
        expected_version: int,
        change: StatusChange,
    ) -> Application:
        current = self._applications.get(updated.id)
        if (
            current is None
            or current.status != expected_status
            or current.version != expected_version
        ):
            raise ConcurrentModificationError(updated.id, expected_status, expected_version)

        self._applications[updated.id] = updated
        self._history.setdefault(updated.id, []).append(change)
        return updated

    async def list_for_actor(
        self,
        role: ActorRole,
        scope_id: UUID,
        status: ApplicationStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Application], int]:
        matches = [
            application
            for application in self._applications.values()
            if application.owner_id_for(role) == scope_id
            and (status is None or application.status == status)
        ]
        matches.sort(key=lambda application: application.application_date, reverse=True)
        return matches[skip : skip + limit], len(matches)

    async def history(self, application_id: UUID) -> list[StatusChange]:
        return list(self._history.get(application_id, []))

    async def find_active_for_student(self, student_id: UUID) -> Application | None:
        for application in self._applications.values():
            if application.student_id == student_id and not application.is_terminal():
                return application
        return None

    async def list_awaiting_payment(self, approved_before: datetime) -> list[Application]:
        return [
            application
            for application in self._applications.values()
            if application.status == ApplicationStatus.DEPOT_APPROVED
            and application.depot_approved_at is not None
            and application.depot_approved_at <= approved_before
            and application.payment_reminder_sent_at is None
        ]

    async def mark_payment_reminder_sent(self, application_id: UUID, sent_at: datetime) -> None:
        application = self._applications.get(application_id)
        if application is None:
            return
        # Reminder bookkeeping is not a workflow change; version stays put
        self._applications[application_id] = replace(
            application, payment_reminder_sent_at=sent_at
        )
