"""
Background Job Scheduler

Runs periodic workflow jobs (payment reminders) on an APScheduler
AsyncIOScheduler that lives inside the FastAPI lifespan.

Jobs are registered before startup; start_scheduler() adds
every registered job. A failing job is logged by the event listener and
the scheduler keeps running. run_job_now() executes a job outside its
schedule, for the development debug endpoints.
"""

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]

TIMEZONE = "UTC"

JOB_DEFAULTS = {
    "coalesce": True,  # One run for a backlog of missed runs
    "max_instances": 1,
    "misfire_grace_time": 60 * 15,
}


@dataclass(frozen=True)
class ScheduledJob:
    job_id: str
    func: JobFunc
    trigger: BaseTrigger
    description: str = ""


_scheduler: AsyncIOScheduler | None = None
_job_registry: dict[str, ScheduledJob] = {}


def _on_job_event(event: JobEvent) -> None:
    if event.code == EVENT_JOB_MISSED:
        logger.warning(f"Job {event.job_id} missed its run at {event.scheduled_run_time}")
    elif getattr(event, "exception", None):
        logger.error(f"Job {event.job_id} failed: {event.exception}", exc_info=event.exception)
    else:
        logger.info(f"Job {event.job_id} finished")


def register_job(
    job_id: str,
    func: JobFunc,
    trigger: BaseTrigger,
    description: str = "",
) -> ScheduledJob:
    """
    Register (or replace) a periodic job.

    If the scheduler is already running the job is scheduled right away,
    otherwise it is added by start_scheduler().
    """
    job = ScheduledJob(job_id=job_id, func=func, trigger=trigger, description=description)
    _job_registry[job_id] = job

    if _scheduler is not None:
        _add_to_scheduler(_scheduler, job)
    else:
        logger.debug(f"Job {job_id} registered, scheduled on startup")
    return job


def _add_to_scheduler(scheduler: AsyncIOScheduler, job: ScheduledJob) -> None:
    scheduler.add_job(
        job.func,
        trigger=job.trigger,
        id=job.job_id,
        name=job.description or job.job_id,
        replace_existing=True,
    )
    logger.info(f"Scheduled job: {job.job_id}")


async def start_scheduler() -> AsyncIOScheduler:
    """Create the scheduler, add every registered job and start it."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return _scheduler

    scheduler = AsyncIOScheduler(timezone=TIMEZONE, job_defaults=JOB_DEFAULTS)
    scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
    for job in _job_registry.values():
        _add_to_scheduler(scheduler, job)

    scheduler.start()
    _scheduler = scheduler
    logger.info(f"Background scheduler started with {len(_job_registry)} job(s)")
    return scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler, waiting for running jobs to finish."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
    _scheduler = None


async def run_job_now(job_id: str) -> dict[str, Any]:
    """
    Execute a registered job immediately, outside its schedule.

    Returns:
        Dict with job_id, status ("success" or "error"), started_at and
        either the job's result or the error message

    Raises:
        KeyError: If no job with that id is registered
    """
    job = _job_registry.get(job_id)
    if job is None:
        raise KeyError(job_id)

    started_at = datetime.now(UTC)
    logger.info(f"Running job {job_id} on demand")

    try:
        result = await job.func()
    except Exception as e:
        logger.error(f"On-demand run of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "started_at": started_at.isoformat(),
            "error": str(e),
        }

    return {
        "job_id": job_id,
        "status": "success",
        "started_at": started_at.isoformat(),
        "result": result,
    }


def describe_jobs() -> list[dict[str, Any]]:
    """Registered jobs with their description and next run time (None when not scheduled)."""
    jobs = []
    for job in _job_registry.values():
        scheduled = _scheduler.get_job(job.job_id) if _scheduler is not None else None
        next_run = scheduled.next_run_time if scheduled is not None else None
        jobs.append(
            {
                "job_id": job.job_id,
                "description": job.description,
                "next_run_time": next_run.isoformat() if next_run else None,
            }
        )
    return jobs
