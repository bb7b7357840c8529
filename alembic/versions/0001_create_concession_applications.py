"""create concession applications and status history

Revision ID: 0001_concessions
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates:
- concession_application_status and workflow_actor_role enum types
- concession_applications: one row per application, `version` guards
  concurrent status changes
- application_status_history: audit trail of every status change
- a unique partial index allowing one open application per student
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_concessions"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

APPLICATION_STATUSES = (
    "pending",
    "college_verified",
    "college_rejected",
    "depot_approved",
    "depot_rejected",
    "payment_pending",
    "payment_verified",
    "issued",
)
ACTOR_ROLES = ("student", "college", "depot")


def upgrade() -> None:
    """Create the application and history tables."""
    status_enum = postgresql.ENUM(
        *APPLICATION_STATUSES, name="concession_application_status", create_type=False
    )
    role_enum = postgresql.ENUM(*ACTOR_ROLES, name="workflow_actor_role", create_type=False)
    status_enum.create(op.get_bind(), checkfirst=True)
    role_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "concession_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("college_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("depot_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_point", sa.String(200), nullable=False),
        sa.Column("end_point", sa.String(200), nullable=False),
        sa.Column("is_renewal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("student_name", sa.String(200), nullable=True),
        sa.Column("student_email", sa.String(255), nullable=True),
        sa.Column("student_phone", sa.String(20), nullable=True),
        sa.Column("status", status_enum, nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_details", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "application_date",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("college_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("depot_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_concession_applications_student_id", "concession_applications", ["student_id"]
    )
    op.create_index(
        "ix_concession_applications_college_status",
        "concession_applications",
        ["college_id", "status"],
    )
    op.create_index(
        "ix_concession_applications_depot_status",
        "concession_applications",
        ["depot_id", "status"],
    )

    # One open application per student, enforced even under concurrent submissions
    op.create_index(
        "ix_concession_applications_one_open_per_student",
        "concession_applications",
        ["student_id"],
        unique=True,
        postgresql_where=sa.text(
            "status NOT IN ('college_rejected', 'depot_rejected', 'issued')"
        ),
    )

    op.create_table(
        "application_status_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("concession_applications.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("from_status", status_enum, nullable=True),
        sa.Column("to_status", status_enum, nullable=False),
        sa.Column("actor_role", role_enum, nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_application_status_history_application_id",
        "application_status_history",
        ["application_id"],
    )


def downgrade() -> None:
    """Drop the tables and enum types."""
    op.drop_index(
        "ix_application_status_history_application_id",
        table_name="application_status_history",
    )
    op.drop_table("application_status_history")

    op.drop_index(
        "ix_concession_applications_one_open_per_student",
        table_name="concession_applications",
    )
    op.drop_index("ix_concession_applications_depot_status", table_name="concession_applications")
    op.drop_index(
        "ix_concession_applications_college_status", table_name="concession_applications"
    )
    op.drop_index("ix_concession_applications_student_id", table_name="concession_applications")
    op.drop_table("concession_applications")

    postgresql.ENUM(name="workflow_actor_role").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="concession_application_status").drop(op.get_bind(), checkfirst=True)
