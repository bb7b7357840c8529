"""
Concession Applications Service Layer

Business logic behind the HTTP endpoints.

This module implements:
1. Submission: a student opens a new application in `pending`
   (one open application per student at a time)
2. Role-scoped reads: detail, listing, progress steps and audit history
3. Status changes: college and depot decisions, and the student's payment
   submission, all delegated to the TransitionExecutor

Every function takes the authenticated Actor explicitly.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import UUID, uuid4

from app.core.auth import Actor, ActorRole
from app.modules.concession_applications.domain import (
    Application,
    PaymentDetails,
    StatusChange,
)
from app.modules.concession_applications.errors import (
    ApplicationNotFoundError,
    DuplicateApplicationError,
    ForbiddenActorError,
    PersistenceFailureError,
)
from app.modules.concession_applications.executor import TransitionExecutor, utc_now
from app.modules.concession_applications.repository import (
    ApplicationRepository,
    DuplicateOpenApplicationError,
    RepositoryError,
)
from app.modules.concession_applications.schemas import (
    ApplicationCreate,
    ApplicationProgressResponse,
    StatusStep,
)
from app.modules.concession_applications.workflow import (
    ApplicationStatus,
    acting_role_for,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


# ============================================
# Submission
# ============================================


async def create_application(
    repository: ApplicationRepository,
    actor: Actor,
    data: ApplicationCreate,
    clock: Callable[[], datetime] = utc_now,
) -> Application:
    """
    Open a new concession application for the acting student.

    Args:
        repository: Application storage
        actor: The student submitting the application
        data: Validated request body
        clock: Source of the application date

    Returns:
        The stored application, in `pending`

    Raises:
        ForbiddenActorError: Actor is not a student, or has no college on record
        DuplicateApplicationError: The student already has an open application
        PersistenceFailureError: The application could not be stored
    """
    if actor.role != ActorRole.STUDENT:
        raise ForbiddenActorError("Only students can submit concession applications.")

    if actor.college_id is None:
        raise ForbiddenActorError("Your student profile is not linked to a college.")

    try:
        existing = await repository.find_active_for_student(actor.scope_id)
    except RepositoryError as e:
        raise PersistenceFailureError("Your applications could not be loaded.") from e
    if existing is not None:
        logger.info(f"Student {actor.scope_id} already has open application {existing.id}")
        raise DuplicateApplicationError(existing.id)

    now = clock()
    application = Application(
        id=uuid4(),
        student_id=actor.scope_id,
        college_id=actor.college_id,
        depot_id=data.depot_id,
        start_point=data.start_point,
        end_point=data.end_point,
        is_renewal=data.is_renewal,
        application_date=now,
        student_name=actor.name,
        student_email=actor.email,
        student_phone=actor.phone,
    )
    application.assert_invariants()

    change = StatusChange(
        application_id=application.id,
        from_status=None,
        to_status=ApplicationStatus.PENDING,
        actor_role=actor.role,
        actor_id=actor.id,
        changed_at=now,
    )

    try:
        created = await repository.create(application, change)
    except DuplicateOpenApplicationError as e:
        # Lost a race with a concurrent submission by the same student
        existing = await repository.find_active_for_student(actor.scope_id)
        raise DuplicateApplicationError(existing.id if existing else application.id) from e
    except RepositoryError as e:
        logger.error(f"Failed to store application for student {actor.scope_id}: {e}")
        raise PersistenceFailureError() from e

    logger.info(
        f"Application {created.id} submitted by student {actor.scope_id} "
        f"({created.start_point} -> {created.end_point}, depot {created.depot_id})"
    )
    return created


# ============================================
# Reads
# ============================================


async def get_application(
    repository: ApplicationRepository,
    actor: Actor,
    application_id: UUID,
) -> Application:
    """
    Load an application the actor is allowed to see.

    Raises:
        ApplicationNotFoundError: If application doesn't exist
        ForbiddenActorError: If the actor is not a party to it
    """
    try:
        application = await repository.get(application_id)
    except RepositoryError as e:
        raise PersistenceFailureError("The application could not be loaded.") from e

    if application is None:
        raise ApplicationNotFoundError(application_id)

    if application.owner_id_for(actor.role) != actor.scope_id:
        logger.warning(f"{actor} tried to read application {application_id}")
        raise ForbiddenActorError()

    return application


async def list_applications(
    repository: ApplicationRepository,
    actor: Actor,
    status: ApplicationStatus | None = None,
    skip: int = 0,
    limit: int = 20,
) -> dict:
    """
    Applications visible to the actor, newest first.

    Students see their own, colleges and depots see those assigned to them.

    Returns:
        Dict with applications, total, skip, limit
    """
    skip = max(skip, 0)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    try:
        applications, total = await repository.list_for_actor(
            actor.role,
            actor.scope_id,
            status=status,
            skip=skip,
            limit=limit,
        )
    except RepositoryError as e:
        logger.error(f"Failed to list applications for {actor}: {e}")
        raise PersistenceFailureError("Applications could not be loaded.") from e
    return {
        "applications": applications,
        "total": total,
        "skip": skip,
        "limit": limit,
    }


async def get_status_history(
    repository: ApplicationRepository,
    actor: Actor,
    application_id: UUID,
) -> list[StatusChange]:
    """Audit trail of an application the actor can see, oldest first."""
    await get_application(repository, actor, application_id)
    try:
        return await repository.history(application_id)
    except RepositoryError as e:
        raise PersistenceFailureError("The status history could not be loaded.") from e


# ============================================
# Progress
# ============================================


STATUS_LABELS: dict[ApplicationStatus, str] = {
    ApplicationStatus.PENDING: "Awaiting College Verification",
    ApplicationStatus.COLLEGE_VERIFIED: "Awaiting Depot Approval",
    ApplicationStatus.COLLEGE_REJECTED: "Rejected by College",
    ApplicationStatus.DEPOT_APPROVED: "Awaiting Payment",
    ApplicationStatus.DEPOT_REJECTED: "Rejected by Depot",
    ApplicationStatus.PAYMENT_PENDING: "Payment Under Verification",
    ApplicationStatus.PAYMENT_VERIFIED: "Awaiting Pass Issue",
    ApplicationStatus.ISSUED: "Pass Issued",
}

STATUS_DESCRIPTIONS: dict[ApplicationStatus, str] = {
    ApplicationStatus.PENDING: (
        "Your application has been submitted. Your college will verify your enrollment."
    ),
    ApplicationStatus.COLLEGE_VERIFIED: (
        "Your college has verified the application. The KSRTC depot will review it next."
    ),
    ApplicationStatus.COLLEGE_REJECTED: (
        "Your college did not verify the application. Contact your college office for details."
    ),
    ApplicationStatus.DEPOT_APPROVED: (
        "The depot approved your application. Submit your payment details to continue."
    ),
    ApplicationStatus.DEPOT_REJECTED: (
        "The depot did not approve your application. Contact the depot for details."
    ),
    ApplicationStatus.PAYMENT_PENDING: ("The depot is verifying your payment."),
    ApplicationStatus.PAYMENT_VERIFIED: (
        "Your payment has been verified. Your pass will be issued shortly."
    ),
    ApplicationStatus.ISSUED: ("Your concession pass has been issued. Collect it from your depot."),
}


def build_status_steps(application: Application) -> list[StatusStep]:
    """
    Progress steps for an application.

    1. Application Submitted - always completed
    2. College Verification - completed once the college decided
    3. Depot Approval - completed once the depot decided
    4. Payment Submitted - completed once payment details are on record
    5. Payment Verified
    6. Pass Issued

    A rejection ends the list at the step that rejected it.
    """
    steps = [
        StatusStep(
            name="Application Submitted",
            completed=True,
            completed_at=application.application_date,
        ),
        StatusStep(
            name="College Verification",
            completed=application.college_verified_at is not None,
            completed_at=application.college_verified_at,
        ),
    ]
    if application.status == ApplicationStatus.COLLEGE_REJECTED:
        return steps

    steps.append(
        StatusStep(
            name="Depot Approval",
            completed=application.depot_approved_at is not None,
            completed_at=application.depot_approved_at,
        )
    )
    if application.status == ApplicationStatus.DEPOT_REJECTED:
        return steps

    steps.extend(
        [
            StatusStep(
                name="Payment Submitted",
                completed=application.payment_details is not None,
            ),
            StatusStep(
                name="Payment Verified",
                completed=application.payment_verified_at is not None,
                completed_at=application.payment_verified_at,
            ),
            StatusStep(
                name="Pass Issued",
                completed=application.issued_at is not None,
                completed_at=application.issued_at,
            ),
        ]
    )
    return steps


async def get_application_progress(
    repository: ApplicationRepository,
    actor: Actor,
    application_id: UUID,
) -> ApplicationProgressResponse:
    """User-facing status summary with progress steps."""
    application = await get_application(repository, actor, application_id)

    return ApplicationProgressResponse(
        id=application.id,
        status=application.status,
        status_label=STATUS_LABELS[application.status],
        status_description=STATUS_DESCRIPTIONS[application.status],
        is_terminal=application.is_terminal(),
        awaiting=acting_role_for(application.status),
        application_date=application.application_date,
        steps=build_status_steps(application),
    )


# ============================================
# Status changes
# ============================================


async def update_status(
    executor: TransitionExecutor,
    actor: Actor,
    application_id: UUID,
    status: ApplicationStatus,
    reason: str | None = None,
) -> Application:
    """College or depot decision on an application."""
    return await executor.request_transition(actor, application_id, status, reason=reason)


async def submit_payment(
    executor: TransitionExecutor,
    actor: Actor,
    application_id: UUID,
    payment: PaymentDetails,
) -> Application:
    """Record the student's payment and move the application to `payment_pending`."""
    return await executor.request_transition(
        actor,
        application_id,
        ApplicationStatus.PAYMENT_PENDING,
        payment=payment,
    )
