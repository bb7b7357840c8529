"""
Transition Executor

The single entry point for status changes. A request runs these steps in order:

1. Load the application (ApplicationNotFoundError)
2. Check the actor's scope against the application (ForbiddenActorError)
3. Check the transition table for (role, current status) (InvalidTransitionError)
4. Rejections need a non-empty reason (ReasonRequiredError)
5. Payment submission needs complete payment details (InvalidPaymentError)
6. Build the updated record
7. Stamp the milestone timestamp for the new status
8. Save it with a guarded write (TransitionConflictError, PersistenceFailureError)
9. Publish a StatusChangedEvent; delivery runs in the background
10. Return the updated application

Steps 1-8 for one application id run under an in-process lock. Writers in
other processes are caught by the guarded write in step 8. Once step 8 has
started, cancelling the caller aborts neither the write nor its notification.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from uuid import UUID

from app.core.auth import Actor
from app.modules.concession_applications.domain import (
    Application,
    PaymentDetails,
    StatusChange,
)
from app.modules.concession_applications.errors import (
    ApplicationNotFoundError,
    ForbiddenActorError,
    InvalidPaymentError,
    InvalidTransitionError,
    InvariantViolationError,
    PersistenceFailureError,
    ReasonRequiredError,
    TransitionConflictError,
)
from app.modules.concession_applications.notifications import (
    NotificationDispatcher,
    StatusChangedEvent,
)
from app.modules.concession_applications.repository import (
    ApplicationRepository,
    ConcurrentModificationError,
    RepositoryError,
)
from app.modules.concession_applications.workflow import (
    REJECTED_STATUSES,
    ApplicationStatus,
    allowed_transitions,
    milestone_field_for,
)

logger = logging.getLogger(__name__)

# Strong references to in-flight notification tasks so they are not
# garbage collected before they finish
_background_notifications: set[asyncio.Task] = set()


def utc_now() -> datetime:
    return datetime.now(UTC)


class ApplicationLocks:
    """Per-application asyncio locks. Idle locks are dropped automatically."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, application_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(application_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[application_id] = lock
        return lock


# Shared by every executor in the process; executors are built per request
_application_locks = ApplicationLocks()


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    return reason or None


class TransitionExecutor:
    """Validates and applies status changes to concession applications."""

    def __init__(
        self,
        repository: ApplicationRepository,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
        locks: ApplicationLocks | None = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self._clock = clock
        self._locks = locks or _application_locks
        self._pending: set[asyncio.Task] = set()

    async def request_transition(
        self,
        actor: Actor,
        application_id: UUID,
        requested_status: ApplicationStatus | str,
        reason: str | None = None,
        payment: PaymentDetails | None = None,
    ) -> Application:
        """
        Move an application to `requested_status` on behalf of `actor`.

        Args:
            actor: Who is asking (role and scope id)
            application_id: Application to change
            requested_status: Target status
            reason: Required for rejections, recorded in the history otherwise
            payment: Required when the student moves to payment_pending

        Returns:
            The saved application

        Raises:
            ApplicationServiceError subclass describing the first failed check.
            The stored record is unchanged whenever this raises.
        """
        async with self._locks.lock_for(application_id):
            loaded = await self._load(application_id)
            updated, change = self._build_transition(
                actor, loaded, requested_status, reason, payment
            )

            persist = asyncio.ensure_future(self._persist(loaded, updated, change))
            try:
                saved = await asyncio.shield(persist)
            except asyncio.CancelledError:
                # The write is under way; let it settle before releasing the lock
                await asyncio.wait({persist})
                self._settle_after_cancel(actor, loaded, persist)
                raise

        self._committed(actor, loaded, saved)
        return saved

    async def wait_for_notifications(self) -> None:
        """Wait until every notification started by this executor has finished."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ============ Steps ============

    def _committed(self, actor: Actor, loaded: Application, saved: Application) -> None:
        logger.info(
            f"Application {saved.id}: {loaded.status.value} -> {saved.status.value} "
            f"by {actor.role.value} {actor.id}"
        )
        self._publish(
            StatusChangedEvent(
                application=saved,
                previous_status=loaded.status,
                new_status=saved.status,
            )
        )

    def _settle_after_cancel(
        self, actor: Actor, loaded: Application, persist: asyncio.Future
    ) -> None:
        """Finish a write whose caller was cancelled: notify if it committed, log if not."""
        if persist.cancelled():
            return
        error = persist.exception()
        if error is not None:
            logger.warning(
                f"Transition of application {loaded.id} failed after its caller "
                f"was cancelled: {error}"
            )
            return
        self._committed(actor, loaded, persist.result())

    async def _load(self, application_id: UUID) -> Application:
        try:
            application = await self.repository.get(application_id)
        except RepositoryError as e:
            logger.error(f"Failed to load application {application_id}: {e}")
            raise PersistenceFailureError("The application could not be loaded.") from e

        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    def _build_transition(
        self,
        actor: Actor,
        application: Application,
        requested_status: ApplicationStatus | str,
        reason: str | None,
        payment: PaymentDetails | None,
    ) -> tuple[Application, StatusChange]:
        if application.owner_id_for(actor.role) != actor.scope_id:
            logger.warning(f"{actor} is not assigned to application {application.id}")
            raise ForbiddenActorError()

        try:
            target = ApplicationStatus(requested_status)
        except ValueError as e:
            raise InvalidTransitionError(
                application.status.value, str(requested_status), actor.role.value
            ) from e

        if target not in allowed_transitions(actor.role, application.status):
            raise InvalidTransitionError(application.status.value, target.value, actor.role.value)

        reason = _clean_reason(reason)
        changes: dict = {"status": target, "version": application.version + 1}

        if target in REJECTED_STATUSES:
            if reason is None:
                raise ReasonRequiredError()
            changes["rejection_reason"] = reason

        if target == ApplicationStatus.PAYMENT_PENDING:
            if payment is None:
                raise InvalidPaymentError("Payment details are required.")
            problems = payment.problems()
            if problems:
                raise InvalidPaymentError(f"Invalid payment details: {', '.join(problems)}.")
            changes["payment_details"] = payment

        now = self._clock()
        # Never stamp earlier than a milestone already on record
        now = max(now, application.latest_milestone())

        milestone = milestone_field_for(target)
        if milestone is not None:
            if getattr(application, milestone) is not None:
                raise InvariantViolationError(
                    f"Application {application.id} already has {milestone} set"
                )
            changes[milestone] = now

        updated = replace(application, **changes)
        updated.assert_invariants()

        change = StatusChange(
            application_id=application.id,
            from_status=application.status,
            to_status=target,
            actor_role=actor.role,
            actor_id=actor.id,
            changed_at=now,
            reason=reason,
        )
        return updated, change

    async def _persist(
        self,
        loaded: Application,
        updated: Application,
        change: StatusChange,
    ) -> Application:
        try:
            return await self.repository.save_transition(
                updated,
                expected_status=loaded.status,
                expected_version=loaded.version,
                change=change,
            )
        except ConcurrentModificationError as e:
            logger.warning(f"Lost a concurrent update on application {loaded.id}: {e}")
            raise TransitionConflictError(loaded.id) from e
        except RepositoryError as e:
            logger.error(f"Failed to persist transition for application {loaded.id}: {e}")
            raise PersistenceFailureError() from e

    def _publish(self, event: StatusChangedEvent) -> None:
        task = asyncio.create_task(self._deliver(event))
        _background_notifications.add(task)
        self._pending.add(task)
        task.add_done_callback(_background_notifications.discard)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: StatusChangedEvent) -> None:
        try:
            await self.dispatcher.notify(event)
        except Exception:
            logger.error(
                f"Notification for application {event.application.id} "
                f"({event.previous_status.value} -> {event.new_status.value}) failed",
                exc_info=True,
            )
