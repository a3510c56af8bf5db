"""Dispatch sweep: send every due reminder once and mark it sent."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Protocol

from pulse.domain.models import (
    REMINDER_LABELS,
    DispatchReport,
    Event,
    PaymentStatus,
    Reminder,
    ReminderPayload,
)
from pulse.repos.memory import (
    ArtistRepository,
    EventRepository,
    ParticipationRepository,
    ReminderRepository,
    UserRepository,
)
from pulse.services.email import EmailTransport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Recipient resolution
# ---------------------------------------------------------------------------


class RecipientResolver(Protocol):
    def resolve(self, reminder: Reminder) -> list[str]:
        """Return the email addresses a reminder goes to."""
        ...


class AllUsersRecipients:
    """Broadcast policy: every registered user gets every reminder."""

    def __init__(self, user_repo: UserRepository) -> None:
        self._users = user_repo

    def resolve(self, reminder: Reminder) -> list[str]:
        return [u.email for u in self._users.list_all()]


class EventParticipantsRecipients:
    """Only users holding a participation for the reminder's event."""

    def __init__(
        self,
        participation_repo: ParticipationRepository,
        user_repo: UserRepository,
        paid_only: bool = False,
    ) -> None:
        self._participations = participation_repo
        self._users = user_repo
        self._paid_only = paid_only

    def resolve(self, reminder: Reminder) -> list[str]:
        emails = []
        for participation in self._participations.list_for_event(reminder.event_id):
            if self._paid_only and participation.payment_status != PaymentStatus.PAID:
                continue
            user = self._users.get(participation.user_id)
            if user is not None:
                emails.append(user.email)
        return emails


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ReminderDispatcher:
    def __init__(
        self,
        reminder_repo: ReminderRepository,
        event_repo: EventRepository,
        artist_repo: ArtistRepository,
        recipients: RecipientResolver,
        transport: EmailTransport,
    ) -> None:
        self._reminders = reminder_repo
        self._events = event_repo
        self._artists = artist_repo
        self._recipients = recipients
        self._transport = transport
        # Background ticks and manual ticks share this; one sweep at a time.
        self._sweep_lock = threading.Lock()

    def dispatch_due(self, now: datetime | None = None) -> DispatchReport:
        """Send all reminders due at *now* and mark each one sent.

        A reminder is marked sent after every recipient has been attempted,
        whether or not individual sends failed; a partially failed reminder
        is not retried. Nothing here raises.
        """
        now = now or datetime.now(timezone.utc)
        report = DispatchReport(ran_at=now)

        with self._sweep_lock:
            try:
                due = self._reminders.list_due(now)
            except Exception:
                logger.exception("Could not load due reminders")
                return report

            if due:
                logger.info(f"Dispatching {len(due)} due reminder(s)")

            for reminder in due:
                try:
                    report.recipient_failures += self._deliver(reminder)
                except Exception:
                    logger.exception(f"Error while sending reminder {reminder.id}")

                try:
                    if self._reminders.mark_sent(reminder.id, now):
                        report.reminders_sent.append(reminder.id)
                except Exception:
                    logger.exception(f"Could not mark reminder {reminder.id} as sent")

        return report

    def _deliver(self, reminder: Reminder) -> int:
        """Send *reminder* to every recipient; returns the number of failures."""
        event = self._events.get(reminder.event_id)
        if event is None:
            logger.warning(f"Reminder {reminder.id} points at missing event {reminder.event_id}")
            return 0

        payload = self._payload(reminder, event)
        recipients = self._recipients.resolve(reminder)
        if not recipients:
            logger.info(f"No recipients for reminder {reminder.id} ({event.title})")
            return 0

        failures = 0
        for recipient in recipients:
            try:
                ok = self._transport.send_reminder(recipient, payload)
            except Exception as e:
                logger.error(f"Reminder {reminder.id} to {recipient} failed: {e}")
                ok = False
            if not ok:
                failures += 1

        logger.info(
            f"Reminder {reminder.id} for '{event.title}' sent to "
            f"{len(recipients) - failures}/{len(recipients)} recipient(s)"
        )
        return failures

    def _payload(self, reminder: Reminder, event: Event) -> ReminderPayload:
        artist = self._artists.get(event.artist_id) if event.artist_id else None
        return ReminderPayload(
            reminder_id=reminder.id,
            event_id=event.id,
            event_title=event.title,
            event_start=event.start_time,
            artist_name=artist.name if artist else None,
            location=event.location,
            time_until=REMINDER_LABELS[reminder.kind],
            title=reminder.title,
            message=reminder.message,
        )
