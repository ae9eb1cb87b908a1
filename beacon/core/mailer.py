"""SMTP delivery for escalation levels using the email notify method."""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from beacon.config import get_settings

logger = logging.getLogger(__name__)


def format_escalation_email(
    title: str,
    severity: str,
    level_number: int,
    recipient_name: str,
    reference_id: str | None = None,
) -> tuple[str, str]:
    """Build an HTML escalation email. Returns (subject, html_body)."""
    settings = get_settings()
    sev = severity.upper()
    subject = f"[{settings.app_name}] [{sev}] Escalation L{level_number}: {title}"

    row_label = "padding:8px 0;color:#3d4f65;"
    row_value = "padding:8px 0;color:#e8ecf1;font-weight:600;"
    wrap = (
        "font-family:sans-serif;max-width:600px;"
        "margin:0 auto;background:#0a0e14;color:#c5cdd8;"
        "padding:24px;border-radius:8px"
    )
    reference_row = (
        f'<tr><td style="{row_label}">Reference</td>'
        f'<td style="{row_value}">{escape(reference_id)}</td></tr>'
        if reference_id
        else ""
    )
    html = f"""
    <div style="{wrap}">
        <h2 style="color:#e8ecf1;margin-top:0;">Escalation level {level_number}</h2>
        <table style="width:100%;border-collapse:collapse;margin-bottom:16px;">
            <tr>
                <td style="{row_label}">Incident</td>
                <td style="{row_value}">{escape(title)}</td>
            </tr>
            <tr>
                <td style="{row_label}">Severity</td>
                <td style="{row_value}">{sev}</td>
            </tr>
            <tr>
                <td style="{row_label}">On call</td>
                <td style="{row_value}">{escape(recipient_name)}</td>
            </tr>
            {reference_row}
        </table>
        <p style="margin-top:24px;">
            <a href="{settings.dashboard_url}" style="color:#10b981;">Acknowledge in {settings.app_name}</a>
        </p>
    </div>
    """
    return subject, html


def _send_email_sync(recipients: list[str], subject: str, html_body: str) -> None:
    settings = get_settings()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_address
    msg["To"] = ", ".join(recipients)
    msg.attach(MIMEText(html_body, "html"))

    server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
    try:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_user and settings.smtp_password:
            server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.smtp_from_address, recipients, msg.as_string())
    finally:
        server.quit()


async def send_email(recipients: list[str], subject: str, html_body: str) -> None:
    """Send an HTML email via SMTP without blocking the event loop.

    Raises ValueError when SMTP is not configured or no recipient is given.
    """
    settings = get_settings()
    if not settings.smtp_host:
        raise ValueError("SMTP not configured (SMTP_HOST not set)")
    if not recipients:
        raise ValueError("No email recipients")

    await asyncio.to_thread(_send_email_sync, recipients, subject, html_body)
    logger.info(f"Email sent to {', '.join(recipients)}: {subject}")
