"""
Concession Application Models

Database tables for applications and their status history.
The repository maps these rows to the plain domain records in domain.py.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.auth import ActorRole
from app.core.database import Base
from app.modules.concession_applications.workflow import ApplicationStatus


# One open application per student, also under concurrent submissions
ONE_OPEN_PER_STUDENT_INDEX = "ix_concession_applications_one_open_per_student"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class ConcessionApplication(Base):
    """
    Student concession application.

    `version` is bumped by every status change and guards concurrent updates.
    """

    __tablename__ = "concession_applications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Parties (immutable)
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    college_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    depot_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Route
    start_point: Mapped[str] = mapped_column(String(200), nullable=False)
    end_point: Mapped[str] = mapped_column(String(200), nullable=False)
    is_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Student contact snapshot for notifications
    student_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    student_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    student_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Workflow
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(
            ApplicationStatus,
            name="concession_application_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Milestones
    application_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    college_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    depot_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Background job tracking
    payment_reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_concession_applications_student_id", "student_id"),
        Index("ix_concession_applications_college_status", "college_id", "status"),
        Index("ix_concession_applications_depot_status", "depot_id", "status"),
        Index(
            ONE_OPEN_PER_STUDENT_INDEX,
            "student_id",
            unique=True,
            postgresql_where=text(
                "status NOT IN ('college_rejected', 'depot_rejected', 'issued')"
            ),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ConcessionApplication(id={self.id}, student_id={self.student_id}, "
            f"status={self.status.value}, version={self.version})>"
        )


class ApplicationStatusHistory(Base):
    """Audit trail row, written in the same transaction as the status change."""

    __tablename__ = "application_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("concession_applications.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[ApplicationStatus | None] = mapped_column(
        Enum(
            ApplicationStatus,
            name="concession_application_status",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    to_status: Mapped[ApplicationStatus] = mapped_column(
        Enum(
            ApplicationStatus,
            name="concession_application_status",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    actor_role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, name="workflow_actor_role", values_callable=_enum_values),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApplicationStatusHistory(application_id={self.application_id}, "
            f"{self.from_status} -> {self.to_status.value})>"
        )
