"""
Concession Applications Background Jobs

Daily payment reminder: students whose application was approved by the depot
more than `payment_reminder_after_hours` ago, and who have not submitted
payment, get one reminder email.

Design Principles:
- The job is idempotent: each application is marked once reminded
- The job never changes an application's status
- Individual failures are logged and don't stop the run
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.email import send_payment_reminder
from app.core.scheduler import register_job
from app.modules.concession_applications.domain import Application
from app.modules.concession_applications.repository import (
    ApplicationRepository,
    SqlAlchemyApplicationRepository,
)

logger = logging.getLogger(__name__)

JOB_ID_PAYMENT_REMINDERS = "concession_applications_payment_reminders"

# Every day at 08:00 UTC
REMINDER_HOUR = 8


async def _process_payment_reminder(
    repository: ApplicationRepository,
    application: Application,
    now: datetime,
) -> dict[str, Any]:
    """Send one reminder and mark the application so it is not reminded again."""
    if not application.student_email:
        logger.warning(f"No student email on application {application.id}, skipping reminder")
        await repository.mark_payment_reminder_sent(application.id, now)
        return {
            "application_id": str(application.id),
            "status": "skipped",
            "reason": "no_email",
        }

    email_sent = await send_payment_reminder(
        to_email=application.student_email,
        student_name=application.student_name or "Student",
        application_id=str(application.id),
        start_point=application.start_point,
        end_point=application.end_point,
    )

    if not email_sent:
        # Still marked to avoid a daily retry loop; the student can see the status online
        logger.error(f"Failed to send payment reminder for application {application.id}")

    await repository.mark_payment_reminder_sent(application.id, now)

    return {
        "application_id": str(application.id),
        "status": "sent" if email_sent else "marked_sent_email_failed",
    }


async def remind_pending_payments(
    repository: ApplicationRepository,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Remind every student whose approved application is still waiting for payment.

    Returns:
        Summary with executed_at, reminders, total_processed, total_errors
    """
    executed_at = now or datetime.now(UTC)
    cutoff = executed_at - timedelta(hours=settings.payment_reminder_after_hours)

    applications = await repository.list_awaiting_payment(cutoff)
    logger.info(
        f"Found {len(applications)} applications awaiting payment since before "
        f"{cutoff.isoformat()}"
    )

    results: dict[str, Any] = {
        "executed_at": executed_at.isoformat(),
        "reminders": [],
        "total_processed": 0,
        "total_errors": 0,
    }

    for application in applications:
        try:
            result = await _process_payment_reminder(repository, application, executed_at)
            results["reminders"].append(result)
            results["total_processed"] += 1
        except Exception as e:
            logger.error(
                f"Error processing payment reminder for application {application.id}: {e}",
                exc_info=True,
            )
            results["reminders"].append(
                {
                    "application_id": str(application.id),
                    "status": "error",
                    "error": str(e),
                }
            )
            results["total_errors"] += 1

    logger.info(
        f"Payment reminder job completed. "
        f"Processed: {results['total_processed']}, Errors: {results['total_errors']}"
    )
    return results


async def send_payment_reminders() -> dict[str, Any]:
    """Scheduled entry point: runs the reminder pass on its own database session."""
    async with async_session_maker() as db:
        return await remind_pending_payments(SqlAlchemyApplicationRepository(db))


def register_concession_application_jobs() -> None:
    """Register the module's jobs. Call before the scheduler starts."""
    register_job(
        job_id=JOB_ID_PAYMENT_REMINDERS,
        func=send_payment_reminders,
        trigger=CronTrigger(hour=REMINDER_HOUR, minute=0, timezone="UTC"),
        description=f"Payment reminders, daily at {REMINDER_HOUR:02d}:00 UTC",
    )
