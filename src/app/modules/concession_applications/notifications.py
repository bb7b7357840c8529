"""
Status Change Notifications

The executor publishes a StatusChangedEvent after every saved transition.
Dispatchers deliver it out of band: a failed delivery never affects the
transition that caused it.
"""

import calendar
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from app.core import email
from app.core.config import settings
from app.modules.concession_applications.domain import Application
from app.modules.concession_applications.workflow import ApplicationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangedEvent:
    application: Application
    previous_status: ApplicationStatus
    new_status: ApplicationStatus


class NotificationDispatcher(Protocol):
    async def notify(self, event: StatusChangedEvent) -> None: ...


class NullNotificationDispatcher:
    """Drops every event. Used when notifications are disabled."""

    async def notify(self, event: StatusChangedEvent) -> None:
        logger.debug(
            f"Notifications disabled, dropping {event.previous_status.value} -> "
            f"{event.new_status.value} for application {event.application.id}"
        )


def add_months(start: date, months: int) -> date:
    """Same day `months` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class EmailNotificationDispatcher:
    """Emails the student about each status their application reaches."""

    def __init__(self, pass_validity_months: int | None = None):
        self.pass_validity_months = (
            pass_validity_months
            if pass_validity_months is not None
            else settings.pass_validity_months
        )
        self._senders: dict[ApplicationStatus, Callable[[Application], Awaitable[bool]]] = {
            ApplicationStatus.COLLEGE_VERIFIED: self._college_verified,
            ApplicationStatus.COLLEGE_REJECTED: self._college_rejected,
            ApplicationStatus.DEPOT_APPROVED: self._depot_approved,
            ApplicationStatus.DEPOT_REJECTED: self._depot_rejected,
            ApplicationStatus.PAYMENT_PENDING: self._payment_received,
            ApplicationStatus.PAYMENT_VERIFIED: self._payment_verified,
            ApplicationStatus.ISSUED: self._pass_issued,
        }

    async def notify(self, event: StatusChangedEvent) -> None:
        application = event.application
        sender = self._senders.get(event.new_status)
        if sender is None:
            return

        if not application.student_email:
            logger.info(f"No student email on application {application.id}, skipping notification")
            return

        sent = await sender(application)
        if sent:
            logger.info(
                f"Notified student of application {application.id}: {event.new_status.value}"
            )
        else:
            logger.error(
                f"Failed to notify student of application {application.id}: "
                f"{event.new_status.value}"
            )

    def pass_valid_until(self, application: Application) -> date:
        issued_on = application.issued_at.date() if application.issued_at else date.today()
        return add_months(issued_on, self.pass_validity_months)

    @staticmethod
    def _common(application: Application) -> dict:
        return {
            "to_email": application.student_email,
            "student_name": application.student_name or "Student",
            "application_id": str(application.id),
            "start_point": application.start_point,
            "end_point": application.end_point,
        }

    async def _college_verified(self, application: Application) -> bool:
        return await email.send_college_verified(**self._common(application))

    async def _college_rejected(self, application: Application) -> bool:
        return await email.send_college_rejected(
            **self._common(application), reason=application.rejection_reason
        )

    async def _depot_approved(self, application: Application) -> bool:
        return await email.send_depot_approved(**self._common(application))

    async def _depot_rejected(self, application: Application) -> bool:
        return await email.send_depot_rejected(
            **self._common(application), reason=application.rejection_reason
        )

    async def _payment_received(self, application: Application) -> bool:
        transaction_id = (
            application.payment_details.transaction_id if application.payment_details else ""
        )
        return await email.send_payment_received(
            **self._common(application), transaction_id=transaction_id
        )

    async def _payment_verified(self, application: Application) -> bool:
        return await email.send_payment_verified(**self._common(application))

    async def _pass_issued(self, application: Application) -> bool:
        return await email.send_pass_issued(
            **self._common(application), valid_until=self.pass_valid_until(application)
        )


def build_dispatcher() -> NotificationDispatcher:
    """Dispatcher for the current configuration."""
    if not settings.notifications_enabled:
        return NullNotificationDispatcher()
    return EmailNotificationDispatcher()
