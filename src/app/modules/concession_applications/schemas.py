"""
Concession Application Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.auth import ActorRole
from app.modules.concession_applications.domain import PaymentDetails
from app.modules.concession_applications.workflow import ApplicationStatus

# ============================================
# Requests
# ============================================


class ApplicationCreate(BaseModel):
    """Request body for POST /applications. The college comes from the student's profile."""

    depot_id: UUID
    start_point: str = Field(..., min_length=1, max_length=200)
    end_point: str = Field(..., min_length=1, max_length=200)
    is_renewal: bool = False

    @model_validator(mode="after")
    def validate_route(self) -> "ApplicationCreate":
        self.start_point = self.start_point.strip()
        self.end_point = self.end_point.strip()
        if not self.start_point or not self.end_point:
            raise ValueError("start_point and end_point cannot be blank")
        if self.start_point.lower() == self.end_point.lower():
            raise ValueError("start_point and end_point must be different stops")
        return self


class StatusUpdateRequest(BaseModel):
    """Request body for PATCH /applications/{id}/status."""

    status: ApplicationStatus
    reason: str | None = Field(None, max_length=1000)


class PaymentSubmission(BaseModel):
    """Request body for POST /applications/{id}/payment."""

    transaction_id: str = Field(..., min_length=1, max_length=100)
    transaction_date: date
    account_holder: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_method: str = Field(..., min_length=1, max_length=50)

    def to_domain(self) -> PaymentDetails:
        return PaymentDetails(
            transaction_id=self.transaction_id.strip(),
            transaction_date=self.transaction_date,
            account_holder=self.account_holder.strip(),
            amount=self.amount,
            payment_method=self.payment_method.strip(),
        )


# ============================================
# Responses
# ============================================


class PaymentDetailsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    transaction_date: date
    account_holder: str
    amount: Decimal
    payment_method: str


class ApplicationResponse(BaseModel):
    """A concession application as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    college_id: UUID
    depot_id: UUID
    start_point: str
    end_point: str
    is_renewal: bool
    status: ApplicationStatus
    rejection_reason: str | None = None
    payment_details: PaymentDetailsResponse | None = None
    application_date: datetime
    college_verified_at: datetime | None = None
    depot_approved_at: datetime | None = None
    payment_verified_at: datetime | None = None
    issued_at: datetime | None = None
    version: int


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    total: int
    skip: int
    limit: int


class StatusStep(BaseModel):
    """A single step in the application progress."""

    name: str
    completed: bool
    completed_at: datetime | None = None


class ApplicationProgressResponse(BaseModel):
    """Response for GET /applications/{id}/progress."""

    id: UUID
    status: ApplicationStatus
    status_label: str
    status_description: str
    is_terminal: bool
    awaiting: ActorRole | None = None
    application_date: datetime
    steps: list[StatusStep]


class StatusHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: ApplicationStatus | None = None
    to_status: ApplicationStatus
    actor_role: ActorRole
    actor_id: UUID
    reason: str | None = None
    changed_at: datetime


class StatusHistoryResponse(BaseModel):
    application_id: UUID
    history: list[StatusHistoryItem]
