"""
Email Service using Resend

Handles sending student emails for the concession workflow.
"""

import asyncio
import logging
from datetime import date
from html import escape

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

SIGNATURE = "KSRTC Online Concession System"

_BASE_TEMPLATE = """
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #7f1d1d; margin-bottom: 24px; }}
            .info-box {{ background-color: #f9fafb; border: 1px solid #e5e7eb; padding: 16px; border-radius: 8px; margin: 16px 0; }}
            .info-box p {{ margin: 8px 0; }}
            .reason-box {{ background-color: #fef2f2; border: 1px solid #ef4444; padding: 16px; border-radius: 8px; margin: 16px 0; }}
            .button {{ display: inline-block; background-color: #7f1d1d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>

            <p>Dear {student_name},</p>

            {body}

            <div class="info-box">
                <p><strong>Application ID:</strong> {application_id}</p>
                <p><strong>Route:</strong> {route}</p>
                {extra_rows}
            </div>

            <a href="{track_url}" class="button">Track Application</a>

            <div class="footer">
                <p>Thank you,</p>
                <p>{signature}</p>
            </div>
        </div>
    </body>
    </html>
    """


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def _render(
    title: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
    body: str,
    extra_rows: str = "",
) -> str:
    """Fill the shared template. `body` and `extra_rows` must already be escaped."""
    return _BASE_TEMPLATE.format(
        title=escape(title),
        student_name=escape(student_name),
        body=body,
        application_id=escape(application_id),
        route=f"{escape(start_point)} to {escape(end_point)}",
        extra_rows=extra_rows,
        track_url=f"{settings.frontend_url}/student/track/{escape(application_id)}",
        signature=SIGNATURE,
    )


async def send_college_verified(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
) -> bool:
    """Tell the student their college verified the application."""
    html_content = _render(
        "Application Verified by College",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>Your concession application has been verified by your college. "
            "It is now awaiting approval from the KSRTC depot.</p>"
        ),
    )
    return await send_email(to_email, "Application Verified by College", html_content)


async def send_college_rejected(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
    reason: str | None,
) -> bool:
    """Tell the student their college rejected the application."""
    html_content = _render(
        "Application Rejected by College",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>Your concession application has been rejected by your college.</p>"
            f'<div class="reason-box"><strong>Reason:</strong> '
            f"{escape(reason or 'No reason provided')}</div>"
            "<p>Please contact your college office for more information.</p>"
        ),
    )
    return await send_email(to_email, "Application Rejected by College", html_content)


async def send_depot_approved(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
) -> bool:
    """Tell the student the depot approved the application and payment is due."""
    html_content = _render(
        "Application Approved by KSRTC Depot",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>Your concession application has been approved by the KSRTC depot. "
            "Please proceed with the payment to complete the process.</p>"
        ),
    )
    return await send_email(to_email, "Application Approved by KSRTC Depot", html_content)


async def send_depot_rejected(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
    reason: str | None,
) -> bool:
    """Tell the student the depot rejected the application."""
    html_content = _render(
        "Application Rejected by KSRTC Depot",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>Your concession application has been rejected by the KSRTC depot.</p>"
            f'<div class="reason-box"><strong>Reason:</strong> '
            f"{escape(reason or 'No reason provided')}</div>"
            "<p>Please contact the depot for more information.</p>"
        ),
    )
    return await send_email(to_email, "Application Rejected by KSRTC Depot", html_content)


async def send_payment_received(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
    transaction_id: str,
) -> bool:
    """Acknowledge the student's payment submission."""
    html_content = _render(
        "Payment Details Received",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>We have received your payment details. "
            "The depot will verify the payment shortly.</p>"
        ),
        extra_rows=f"<p><strong>Transaction ID:</strong> {escape(transaction_id)}</p>",
    )
    return await send_email(to_email, "Payment Details Received", html_content)


async def send_payment_verified(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
) -> bool:
    """Tell the student the depot verified the payment."""
    html_content = _render(
        "Payment Verified",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>Your payment for the concession application has been verified. "
            "Your concession pass will be issued shortly.</p>"
        ),
    )
    return await send_email(to_email, "Payment Verified", html_content)


async def send_pass_issued(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
    valid_until: date,
) -> bool:
    """Tell the student the pass has been issued and until when it is valid."""
    html_content = _render(
        "Concession Pass Issued",
        student_name,
        application_id,
        start_point,
        end_point,
        body="<p>Your concession pass has been issued. You can collect it from your depot.</p>",
        extra_rows=f"<p><strong>Valid until:</strong> {valid_until.isoformat()}</p>",
    )
    return await send_email(to_email, "Concession Pass Issued", html_content)


async def send_payment_reminder(
    to_email: str,
    student_name: str,
    application_id: str,
    start_point: str,
    end_point: str,
) -> bool:
    """Remind the student that an approved application is waiting for payment."""
    html_content = _render(
        "Payment Reminder",
        student_name,
        application_id,
        start_point,
        end_point,
        body=(
            "<p>This is a reminder that your approved concession application is waiting "
            "for payment. Please complete the payment at your earliest convenience to "
            "avoid delays in receiving your concession pass.</p>"
        ),
    )
    return await send_email(
        to_email, "Payment Reminder: KSRTC Concession Application", html_content
    )
