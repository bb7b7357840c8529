"""
Concession Application Errors

Every failure of the workflow is a subclass of ApplicationServiceError carrying
a stable error code and the HTTP status the router responds with.
"""

from uuid import UUID


class ApplicationServiceError(Exception):
    """Base exception for application service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ApplicationNotFoundError(ApplicationServiceError):
    """Raised when an application doesn't exist."""

    def __init__(self, application_id: UUID):
        super().__init__(
            message=f"Application {application_id} not found.",
            error_code="APPLICATION_NOT_FOUND",
            status_code=404,
        )
        self.application_id = application_id


class ForbiddenActorError(ApplicationServiceError):
    """Raised when the actor does not own, or is not assigned to, the application."""

    def __init__(self, message: str = "You are not allowed to act on this application."):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
        )


class InvalidTransitionError(ApplicationServiceError):
    """Raised when the requested status is not reachable for this actor."""

    def __init__(self, current_status: str, requested_status: str, role: str):
        super().__init__(
            message=(
                f"A {role} cannot move an application from '{current_status}' "
                f"to '{requested_status}'."
            ),
            error_code="INVALID_TRANSITION",
            status_code=400,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ReasonRequiredError(ApplicationServiceError):
    """Raised when a rejection is requested without a reason."""

    def __init__(self):
        super().__init__(
            message="A reason is required to reject an application.",
            error_code="REASON_REQUIRED",
            status_code=400,
        )


class InvalidPaymentError(ApplicationServiceError):
    """Raised when payment details are missing or malformed."""

    def __init__(self, message: str = "Payment details are missing or invalid."):
        super().__init__(
            message=message,
            error_code="INVALID_PAYMENT",
            status_code=400,
        )


class TransitionConflictError(ApplicationServiceError):
    """Raised when a concurrent transition changed the application first."""

    def __init__(self, application_id: UUID):
        super().__init__(
            message=(
                f"Application {application_id} was modified by another request. "
                "Reload it and try again."
            ),
            error_code="CONFLICT",
            status_code=409,
        )


class PersistenceFailureError(ApplicationServiceError):
    """Raised when the application could not be saved. Nothing was applied."""

    def __init__(self, message: str = "The application could not be saved."):
        super().__init__(
            message=message,
            error_code="PERSISTENCE_FAILURE",
            status_code=500,
        )


class InvariantViolationError(ApplicationServiceError):
    """Raised when an application record breaks a workflow invariant."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INVARIANT_VIOLATION",
            status_code=500,
        )


class DuplicateApplicationError(ApplicationServiceError):
    """Raised when a student already has an application in progress."""

    def __init__(self, existing_id: UUID):
        super().__init__(
            message=(
                f"You already have an application in progress ({existing_id}). "
                "A new application can be submitted once it is closed."
            ),
            error_code="DUPLICATE_APPLICATION",
            status_code=409,
        )
        self.existing_id = existing_id
