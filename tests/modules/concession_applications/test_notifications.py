"""
Unit tests for status change notifications.
"""

from dataclasses import replace
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from app.modules.concession_applications.notifications import (
    EmailNotificationDispatcher,
    NullNotificationDispatcher,
    StatusChangedEvent,
    add_months,
    build_dispatcher,
)
from app.modules.concession_applications.workflow import ApplicationStatus


def _event(application, previous_status):
    return StatusChangedEvent(
        application=application,
        previous_status=previous_status,
        new_status=application.status,
    )


class TestAddMonths:
    @pytest.mark.parametrize(
        ("start", "months", "expected"),
        [
            (date(2026, 6, 15), 3, date(2026, 9, 15)),
            (date(2026, 11, 30), 3, date(2027, 2, 28)),
            (date(2027, 11, 30), 3, date(2028, 2, 29)),
            (date(2026, 1, 31), 1, date(2026, 2, 28)),
            (date(2026, 12, 1), 12, date(2027, 12, 1)),
        ],
    )
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected


class TestEmailNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_college_verified(self, make_application):
        application = make_application(ApplicationStatus.COLLEGE_VERIFIED)
        with patch(
            "app.core.email.send_college_verified", new=AsyncMock(return_value=True)
        ) as mock_send:
            await EmailNotificationDispatcher().notify(
                _event(application, ApplicationStatus.PENDING)
            )

        mock_send.assert_awaited_once_with(
            to_email="anjali@student.test",
            student_name="Anjali Nair",
            application_id=str(application.id),
            start_point="Thampanoor",
            end_point="Kazhakkoottam",
        )

    @pytest.mark.asyncio
    async def test_rejection_carries_reason(self, make_application):
        application = make_application(
            ApplicationStatus.DEPOT_REJECTED, rejection_reason="Route not served"
        )
        with patch(
            "app.core.email.send_depot_rejected", new=AsyncMock(return_value=True)
        ) as mock_send:
            await EmailNotificationDispatcher().notify(
                _event(application, ApplicationStatus.COLLEGE_VERIFIED)
            )

        assert mock_send.await_args.kwargs["reason"] == "Route not served"

    @pytest.mark.asyncio
    async def test_payment_received_carries_transaction(self, make_application):
        application = make_application(ApplicationStatus.PAYMENT_PENDING)
        with patch(
            "app.core.email.send_payment_received", new=AsyncMock(return_value=True)
        ) as mock_send:
            await EmailNotificationDispatcher().notify(
                _event(application, ApplicationStatus.DEPOT_APPROVED)
            )

        assert mock_send.await_args.kwargs["transaction_id"] == "TXN-20260601-001"

    @pytest.mark.asyncio
    async def test_pass_issued_carries_validity(self, make_application):
        application = make_application(ApplicationStatus.ISSUED)
        with patch(
            "app.core.email.send_pass_issued", new=AsyncMock(return_value=True)
        ) as mock_send:
            await EmailNotificationDispatcher(pass_validity_months=3).notify(
                _event(application, ApplicationStatus.PAYMENT_VERIFIED)
            )

        # Issued 2026-06-01, valid for three months
        assert mock_send.await_args.kwargs["valid_until"] == date(2026, 9, 1)

    @pytest.mark.asyncio
    async def test_no_email_on_record(self, make_application):
        application = replace(
            make_application(ApplicationStatus.COLLEGE_VERIFIED), student_email=None
        )
        with patch("app.core.email.send_college_verified", new=AsyncMock()) as mock_send:
            await EmailNotificationDispatcher().notify(
                _event(application, ApplicationStatus.PENDING)
            )
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_does_not_raise(self, make_application):
        application = make_application(ApplicationStatus.PAYMENT_VERIFIED)
        with patch(
            "app.core.email.send_payment_verified", new=AsyncMock(return_value=False)
        ) as mock_send:
            await EmailNotificationDispatcher().notify(
                _event(application, ApplicationStatus.PAYMENT_PENDING)
            )
        mock_send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pending_sends_nothing(self, pending_application):
        with patch("app.core.email.send_email", new=AsyncMock()) as mock_send:
            await EmailNotificationDispatcher().notify(
                StatusChangedEvent(
                    application=pending_application,
                    previous_status=ApplicationStatus.PENDING,
                    new_status=ApplicationStatus.PENDING,
                )
            )
        mock_send.assert_not_awaited()


class TestBuildDispatcher:
    def test_disabled(self):
        with patch(
            "app.modules.concession_applications.notifications.settings"
        ) as mock_settings:
            mock_settings.notifications_enabled = False
            assert isinstance(build_dispatcher(), NullNotificationDispatcher)

    def test_enabled(self):
        with patch(
            "app.modules.concession_applications.notifications.settings"
        ) as mock_settings:
            mock_settings.notifications_enabled = True
            mock_settings.pass_validity_months = 6
            dispatcher = build_dispatcher()
        assert isinstance(dispatcher, EmailNotificationDispatcher)
        assert dispatcher.pass_validity_months == 6

    @pytest.mark.asyncio
    async def test_null_dispatcher_accepts_events(self, pending_application):
        await NullNotificationDispatcher().notify(
            _event(pending_application, ApplicationStatus.PENDING)
        )
