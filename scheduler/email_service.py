"""
Email Service using Resend
Provides booking notifications using MJML templates for responsive design
"""

import logging
from datetime import datetime
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import BOOKING_CONTACT_EMAIL, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    appointment_changed_template,
    booking_confirmation_template,
    booking_staff_notification_template,
    provider_booking_notice_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfiguredError(Exception):
    pass


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # Newer releases return an object with .html/.errors; older ones a dict
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        if hasattr(result, "html"):
            if getattr(result, "errors", None):
                logger.warning(f"MJML compilation warnings: {result.errors}")
            return result.html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise RuntimeError(f"Failed to compile MJML template: {e}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailNotConfiguredError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise RuntimeError(f"Failed to send email: {e}") from e


def format_appointment_time(local_start: datetime) -> tuple[str, str]:
    """('Monday, March 3, 2025', '9:00 AM MST') for a clinic-local datetime"""
    day = f"{local_start.strftime('%A, %B')} {local_start.day}, {local_start.year}"
    clock = local_start.strftime("%I:%M %p").lstrip("0")
    zone = local_start.tzname() or ""
    return day, f"{clock} {zone}".strip()


# ============================================
# Booking notifications
# ============================================


async def send_booking_confirmation(
    to: str,
    patient_name: str,
    provider_name: str,
    local_start: datetime,
    location_type: str = "telehealth",
) -> dict:
    day, clock = format_appointment_time(local_start)
    return await send_email(
        to=to,
        subject=f"Appointment Confirmed - {day}",
        mjml_content=booking_confirmation_template(
            patient_name, provider_name, day, clock, location_type
        ),
    )


async def send_booking_staff_notification(
    patient_name: str,
    patient_email: str,
    patient_phone: str,
    provider_name: str,
    payer_name: str,
    local_start: datetime,
    appointment_id: str,
    booking_source: str,
    warnings: Optional[list[str]] = None,
) -> Optional[dict]:
    """Mirror a booking to the intake mailbox; skipped when no mailbox is configured"""
    if not BOOKING_CONTACT_EMAIL:
        return None
    day, clock = format_appointment_time(local_start)
    return await send_email(
        to=BOOKING_CONTACT_EMAIL,
        subject=f"New booking: {patient_name} with {provider_name}",
        mjml_content=booking_staff_notification_template(
            patient_name,
            patient_email,
            patient_phone,
            provider_name,
            payer_name,
            day,
            clock,
            appointment_id,
            booking_source,
            warnings,
        ),
    )


async def send_provider_booking_notice(
    to: str,
    provider_name: str,
    patient_name: str,
    local_start: datetime,
    supervising_provider_name: Optional[str] = None,
) -> dict:
    day, clock = format_appointment_time(local_start)
    return await send_email(
        to=to,
        subject=f"New appointment - {day} {clock}",
        mjml_content=provider_booking_notice_template(
            provider_name, patient_name, day, clock, supervising_provider_name
        ),
    )


async def send_appointment_changed(
    to: str,
    patient_name: str,
    provider_name: str,
    local_start: datetime,
    cancelled: bool = False,
    reason: Optional[str] = None,
) -> dict:
    day, clock = format_appointment_time(local_start)
    subject = "Appointment Cancelled" if cancelled else f"Appointment Rescheduled - {day}"
    return await send_email(
        to=to,
        subject=subject,
        mjml_content=appointment_changed_template(
            patient_name, provider_name, day, clock, cancelled, reason
        ),
    )
