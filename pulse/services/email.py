"""Outbound email transport used for event reminders."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from pulse.core.config import Settings
from pulse.domain.models import ReminderPayload

logger = logging.getLogger(__name__)


class EmailTransport(Protocol):
    def send_reminder(self, recipient: str, payload: ReminderPayload) -> bool:
        """Send one reminder email. Returns False (or raises) on failure."""
        ...


def render_reminder(payload: ReminderPayload) -> tuple[str, str, str]:
    """Return ``(subject, text, html)`` for a reminder email."""
    artist = payload.artist_name or "To be confirmed"
    location = payload.location or "To be confirmed"
    when = payload.event_start.strftime("%A %d %B %Y, %H:%M %Z")
    subject = f"Reminder: {payload.event_title} in {payload.time_until}"
    text = (
        f"{payload.message}\n\n"
        f"Event: {payload.event_title}\n"
        f"Artist: {artist}\n"
        f"Location: {location}\n"
        f"Date: {when}\n"
        f"Starts in {payload.time_until}."
    )
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>{payload.title}</h2>
        <h3>{payload.event_title}</h3>
        <p><strong>Artist:</strong> {artist}</p>
        <p><strong>Location:</strong> {location}</p>
        <p><strong>Date:</strong> {when}</p>
        <p><strong>Reminder:</strong> the event starts in {payload.time_until}</p>
      </div>
    """
    return subject, text, html


class LoggingEmailTransport:
    """Transport used when SEND_EMAILS is off: logs instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, ReminderPayload]] = []

    def send_reminder(self, recipient: str, payload: ReminderPayload) -> bool:
        subject, _, _ = render_reminder(payload)
        logger.info(f"Email sending disabled. Would send: {subject} to {recipient}")
        self.sent.append((recipient, payload))
        return True


class SmtpEmailTransport:
    """SMTP transport with STARTTLS."""

    def __init__(self, settings: Settings) -> None:
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME
        self.password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.timeout = settings.EMAIL_TIMEOUT

    def send_reminder(self, recipient: str, payload: ReminderPayload) -> bool:
        subject, text, html = render_reminder(payload)

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = recipient
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, [recipient], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send reminder email to {recipient}: {e}")
            return False

        logger.info(f"Reminder email sent to {recipient}")
        return True


def build_email_transport(settings: Settings) -> EmailTransport:
    if settings.SEND_EMAILS:
        return SmtpEmailTransport(settings)
    return LoggingEmailTransport()
