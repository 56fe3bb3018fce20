"""
MJML Email Templates
Booking notifications for patients, providers and the intake team
"""

from typing import Optional

from .config import FRONTEND_URL

THEME = {
    "primary": "#BF9C73",
    "primary_dark": "#091747",
    "background": "#FEF8F1",
    "card_bg": "#ffffff",
    "text_primary": "#091747",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    is_staff_email: bool = False,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    footer_notice = ""
    if is_staff_email:
        footer_notice = """
        <mj-text align="center" font-size="12px" color="#94a3b8" padding="12px 0 0 0">
          Internal notification. Contains protected health information; do not forward.
        </mj-text>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="32px 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              If this is a medical emergency, call 911 or go to the nearest emergency room.
            </mj-text>
            {footer_notice}
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _details_block(rows: list[tuple[str, str]]) -> str:
    lines = "".join(
        f"<tr><td style=\"padding:4px 12px 4px 0;color:{THEME['text_muted']}\">{label}</td>"
        f"<td style=\"padding:4px 0;color:{THEME['text_primary']}\">{value}</td></tr>"
        for label, value in rows
        if value
    )
    return f"""
    <mj-table font-size="15px" padding="12px 0 20px 0">
      {lines}
    </mj-table>
    """


def booking_confirmation_template(
    patient_name: str,
    provider_name: str,
    appointment_date: str,
    appointment_time: str,
    location_type: str,
) -> str:
    """Booking confirmation for the patient"""
    visit = "a telehealth visit" if location_type == "telehealth" else "an in-person visit"
    content = f"""
    <mj-text>
      Hi {patient_name},
    </mj-text>

    <mj-text>
      Your appointment with <strong>{provider_name}</strong> is booked. This is {visit}.
    </mj-text>

    <mj-text align="center" font-size="18px" font-weight="600" color="{THEME['success']}" padding="20px 0 8px 0">
      ✓ Appointment Confirmed
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0">
      📅 {appointment_date}
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0 0 20px 0">
      ⏰ {appointment_time}
    </mj-text>

    <mj-text>
      You will receive intake paperwork from our EMR shortly. Please complete it before your visit.
    </mj-text>
    """

    return get_base_template(
        title="Your Appointment is Booked",
        preview_text=f"Appointment with {provider_name} on {appointment_date}",
        content_sections=content,
    )


def booking_staff_notification_template(
    patient_name: str,
    patient_email: str,
    patient_phone: str,
    provider_name: str,
    payer_name: str,
    appointment_date: str,
    appointment_time: str,
    appointment_id: str,
    booking_source: str,
    warnings: Optional[list[str]] = None,
) -> str:
    """Copy of every booking for the intake team"""
    warning_section = ""
    if warnings:
        items = "<br/>".join(f"⚠️ {w}" for w in warnings)
        warning_section = f"""
        <mj-text color="{THEME['danger']}" padding="0 0 16px 0">
          {items}
        </mj-text>
        """

    content = f"""
    <mj-text>
      A new appointment was booked through the {booking_source}.
    </mj-text>

    {_details_block([
        ("Patient", patient_name),
        ("Email", patient_email),
        ("Phone", patient_phone),
        ("Provider", provider_name),
        ("Insurance", payer_name),
        ("Date", appointment_date),
        ("Time", appointment_time),
        ("Appointment ID", appointment_id),
    ])}

    {warning_section}
    """

    return get_base_template(
        title="New Booking",
        preview_text=f"New booking: {patient_name} with {provider_name}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/admin/appointments",
        cta_label="Open Admin Dashboard",
        is_staff_email=True,
    )


def provider_booking_notice_template(
    provider_name: str,
    patient_name: str,
    appointment_date: str,
    appointment_time: str,
    supervising_provider_name: Optional[str] = None,
) -> str:
    """New appointment notice for the rendering provider"""
    supervision_note = ""
    if supervising_provider_name:
        supervision_note = f"""
        <mj-text font-size="14px" color="{THEME['text_muted']}">
          Billed under the supervision of {supervising_provider_name}.
        </mj-text>
        """

    content = f"""
    <mj-text>
      Hi {provider_name},
    </mj-text>

    <mj-text>
      <strong>{patient_name}</strong> booked an intake appointment with you.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      📅 {appointment_date} {appointment_time}
    </mj-text>

    {supervision_note}
    """

    return get_base_template(
        title="New Appointment",
        preview_text=f"New appointment with {patient_name}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/dashboard/appointments",
        cta_label="View Schedule",
        is_staff_email=True,
    )


def appointment_changed_template(
    patient_name: str,
    provider_name: str,
    appointment_date: str,
    appointment_time: str,
    cancelled: bool = False,
    reason: Optional[str] = None,
) -> str:
    """Reschedule or cancellation notice for the patient"""
    if cancelled:
        headline = f"Your appointment with <strong>{provider_name}</strong> on {appointment_date} at {appointment_time} has been cancelled."
        title = "Appointment Cancelled"
    else:
        headline = f"Your appointment with <strong>{provider_name}</strong> has moved to {appointment_date} at {appointment_time}."
        title = "Appointment Rescheduled"

    reason_section = ""
    if reason:
        reason_section = f"""
        <mj-text font-size="14px" color="{THEME['text_muted']}">
          Reason: {reason}
        </mj-text>
        """

    content = f"""
    <mj-text>
      Hi {patient_name},
    </mj-text>

    <mj-text>
      {headline}
    </mj-text>

    {reason_section}
    """

    return get_base_template(
        title=title,
        preview_text=title,
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/book" if cancelled else None,
        cta_label="Book a New Time" if cancelled else None,
    )
