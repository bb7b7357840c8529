"""
Concession Applications Router

Endpoints:
- POST   /applications                 - Student submits an application
- GET    /applications                 - Role-scoped list (optional status filter)
- GET    /applications/{id}            - Application detail
- GET    /applications/{id}/progress   - Status label, description and steps
- GET    /applications/{id}/history    - Status change audit trail
- PATCH  /applications/{id}/status     - College/depot decision
- POST   /applications/{id}/payment    - Student submits payment details
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, ActorRole, get_current_actor, require_roles
from app.core.database import get_db
from app.core.rate_limit import RateLimitRule, check_actor_rate_limit
from app.modules.concession_applications import service
from app.modules.concession_applications.errors import ApplicationServiceError
from app.modules.concession_applications.executor import TransitionExecutor
from app.modules.concession_applications.notifications import (
    NotificationDispatcher,
    build_dispatcher,
)
from app.modules.concession_applications.repository import (
    ApplicationRepository,
    SqlAlchemyApplicationRepository,
)
from app.modules.concession_applications.schemas import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationProgressResponse,
    ApplicationResponse,
    PaymentSubmission,
    StatusHistoryItem,
    StatusHistoryResponse,
    StatusUpdateRequest,
)
from app.modules.concession_applications.workflow import ApplicationStatus

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Rate Limiting Configuration
# ============================================

RATE_LIMIT_CREATE = RateLimitRule("create", limit=5, window_seconds=3600)
RATE_LIMIT_TRANSITION = RateLimitRule("transition", limit=30, window_seconds=60)
RATE_LIMIT_PAYMENT = RateLimitRule("payment", limit=5, window_seconds=60)


# ============================================
# Dependencies
# ============================================

_dispatcher: NotificationDispatcher | None = None


async def get_application_repository(
    db: AsyncSession = Depends(get_db),
) -> ApplicationRepository:
    return SqlAlchemyApplicationRepository(db)


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


async def get_transition_executor(
    repository: ApplicationRepository = Depends(get_application_repository),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> TransitionExecutor:
    return TransitionExecutor(repository, dispatcher)


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: ApplicationServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    ) from e


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )


# ============================================
# Submission
# ============================================


@router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Concession Application",
    description="""
Submit a new concession application. The application starts in `pending`
and is routed to the student's college for verification.

A student can only have one open application at a time.

**Access:** Students only
""",
    responses={
        201: {"description": "Application created"},
        403: {"description": "Not a student, or no college on the student's profile"},
        409: {"description": "Student already has an open application"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def create_application(
    data: ApplicationCreate,
    repository: ApplicationRepository = Depends(get_application_repository),
    actor: Actor = Depends(require_roles(ActorRole.STUDENT)),
) -> ApplicationResponse:
    await check_actor_rate_limit(actor, RATE_LIMIT_CREATE)

    try:
        application = await service.create_application(repository, actor, data)
        return ApplicationResponse.model_validate(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error creating application: {e}")
        raise _internal_error() from e


# ============================================
# Reads
# ============================================


@router.get(
    "",
    response_model=ApplicationListResponse,
    summary="List Applications",
    description="""
List applications visible to the caller, newest first.

- Students see their own applications
- College staff see applications submitted to their college
- Depot staff see applications assigned to their depot

**Pagination:** `skip` (default 0), `limit` (1-100, default 20)
""",
)
async def list_applications(
    status_filter: ApplicationStatus | None = Query(
        None,
        alias="status",
        description="Filter by application status",
    ),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
    repository: ApplicationRepository = Depends(get_application_repository),
    actor: Actor = Depends(get_current_actor),
) -> ApplicationListResponse:
    try:
        result = await service.list_applications(
            repository,
            actor,
            status=status_filter,
            skip=skip,
            limit=limit,
        )
        return ApplicationListResponse(
            applications=[
                ApplicationResponse.model_validate(application)
                for application in result["applications"]
            ],
            total=result["total"],
            skip=result["skip"],
            limit=result["limit"],
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error listing applications: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Get Application",
    responses={
        403: {"description": "Caller is not a party to this application"},
        404: {"description": "Application not found"},
    },
)
async def get_application(
    application_id: UUID,
    repository: ApplicationRepository = Depends(get_application_repository),
    actor: Actor = Depends(get_current_actor),
) -> ApplicationResponse:
    try:
        application = await service.get_application(repository, actor, application_id)
        return ApplicationResponse.model_validate(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error getting application {application_id}: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}/progress",
    response_model=ApplicationProgressResponse,
    summary="Get Application Progress",
    description="User-friendly status label, description, and progress steps.",
)
async def get_application_progress(
    application_id: UUID,
    repository: ApplicationRepository = Depends(get_application_repository),
    actor: Actor = Depends(get_current_actor),
) -> ApplicationProgressResponse:
    try:
        return await service.get_application_progress(repository, actor, application_id)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error getting progress for application {application_id}: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}/history",
    response_model=StatusHistoryResponse,
    summary="Get Status History",
    description="Every status change of the application, oldest first.",
)
async def get_status_history(
    application_id: UUID,
    repository: ApplicationRepository = Depends(get_application_repository),
    actor: Actor = Depends(get_current_actor),
) -> StatusHistoryResponse:
    try:
        history = await service.get_status_history(repository, actor, application_id)
        return StatusHistoryResponse(
            application_id=application_id,
            history=[StatusHistoryItem.model_validate(change) for change in history],
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error getting history for application {application_id}: {e}")
        raise _internal_error() from e


# ============================================
# Status changes
# ============================================


@router.patch(
    "/{application_id}/status",
    response_model=ApplicationResponse,
    summary="Update Application Status",
    description="""
Record a college or depot decision.

| Role | From | To |
|---|---|---|
| college | `pending` | `college_verified`, `college_rejected` |
| depot | `college_verified` | `depot_approved`, `depot_rejected` |
| depot | `payment_pending` | `payment_verified` |
| depot | `payment_verified` | `issued` |

Rejections require a `reason`. Rejected and issued applications are final.

**Access:** College and depot staff
""",
    responses={
        400: {"description": "Transition not allowed, or reason missing"},
        403: {"description": "Caller is not assigned to this application"},
        404: {"description": "Application not found"},
        409: {"description": "Application changed concurrently; reload and retry"},
    },
)
async def update_status(
    application_id: UUID,
    data: StatusUpdateRequest,
    executor: TransitionExecutor = Depends(get_transition_executor),
    actor: Actor = Depends(require_roles(ActorRole.COLLEGE, ActorRole.DEPOT)),
) -> ApplicationResponse:
    await check_actor_rate_limit(actor, RATE_LIMIT_TRANSITION)

    try:
        application = await service.update_status(
            executor,
            actor,
            application_id,
            data.status,
            reason=data.reason,
        )
        return ApplicationResponse.model_validate(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error updating status of application {application_id}: {e}")
        raise _internal_error() from e


@router.post(
    "/{application_id}/payment",
    response_model=ApplicationResponse,
    summary="Submit Payment Details",
    description="""
Submit the fee payment for a depot-approved application. Moves the
application to `payment_pending` for depot verification.

Body: `transaction_id`, `transaction_date`, `account_holder`, `amount` (> 0),
`payment_method`. Missing or invalid fields are rejected with 400 `INVALID_PAYMENT`.

**Access:** The student who owns the application
""",
    responses={
        400: {"description": "Invalid payment details, or application not awaiting payment"},
        403: {"description": "Caller does not own this application"},
        404: {"description": "Application not found"},
        409: {"description": "Application changed concurrently; reload and retry"},
    },
)
async def submit_payment(
    application_id: UUID,
    payload: dict[str, Any] = Body(...),
    executor: TransitionExecutor = Depends(get_transition_executor),
    actor: Actor = Depends(require_roles(ActorRole.STUDENT)),
) -> ApplicationResponse:
    await check_actor_rate_limit(actor, RATE_LIMIT_PAYMENT)

    try:
        payment = PaymentSubmission.model_validate(payload)
    except ValidationError as e:
        fields = sorted({str(error["loc"][0]) for error in e.errors() if error["loc"]})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_PAYMENT",
                "message": f"Invalid payment details: {', '.join(fields) or 'body'}.",
            },
        ) from e

    try:
        application = await service.submit_payment(
            executor,
            actor,
            application_id,
            payment.to_domain(),
        )
        return ApplicationResponse.model_validate(application)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error submitting payment for application {application_id}: {e}")
        raise _internal_error() from e
