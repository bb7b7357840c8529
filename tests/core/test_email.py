"""
Unit tests for the Resend email helpers.
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from app.core import email


class TestSendEmail:
    @pytest.mark.asyncio
    async def test_without_api_key_logs_only(self):
        with (
            patch.object(email.resend, "api_key", None),
            patch.object(email.resend.Emails, "send") as mock_send,
        ):
            assert await email.send_email("s@test", "Subject", "<p>hi</p>") is True
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_through_resend(self):
        with (
            patch.object(email.resend, "api_key", "re_test"),
            patch.object(email.resend.Emails, "send", return_value={"id": "em_1"}) as mock_send,
        ):
            assert await email.send_email("s@test", "Subject", "<p>hi</p>") is True

        params = mock_send.call_args.args[0]
        assert params["to"] == ["s@test"]
        assert params["subject"] == "Subject"

    @pytest.mark.asyncio
    async def test_provider_error_returns_false(self):
        with (
            patch.object(email.resend, "api_key", "re_test"),
            patch.object(email.resend.Emails, "send", side_effect=RuntimeError("quota")),
        ):
            assert await email.send_email("s@test", "Subject", "<p>hi</p>") is False


class TestTemplates:
    @pytest.mark.asyncio
    async def test_rejection_reason_is_escaped(self):
        with patch.object(email, "send_email", new=AsyncMock(return_value=True)) as mock_send:
            await email.send_college_rejected(
                to_email="s@test",
                student_name="Anjali",
                application_id="abc",
                start_point="Aluva",
                end_point="Edappally",
                reason="<script>x</script>",
            )

        _, subject, html_content = mock_send.await_args.args
        assert subject == "Application Rejected by College"
        assert "&lt;script&gt;" in html_content
        assert "<script>" not in html_content
        assert "Aluva to Edappally" in html_content

    @pytest.mark.asyncio
    async def test_pass_issued_shows_validity(self):
        with patch.object(email, "send_email", new=AsyncMock(return_value=True)) as mock_send:
            await email.send_pass_issued(
                to_email="s@test",
                student_name="Anjali",
                application_id="abc",
                start_point="Aluva",
                end_point="Edappally",
                valid_until=date(2026, 9, 1),
            )

        html_content = mock_send.await_args.args[2]
        assert "2026-09-01" in html_content
