"""Service for creating and rescheduling event reminders."""

from __future__ import annotations

import logging

from pulse.domain.errors import PersistenceConflictError
from pulse.domain.models import (
    REMINDER_LABELS,
    REMINDER_OFFSETS,
    Event,
    Reminder,
    ReminderKind,
)
from pulse.repos.memory import ArtistRepository, EventRepository, ReminderRepository

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Event reminder"
ARTIST_FALLBACK = "Artist"
LOCATION_FALLBACK = "Location not specified"


def render_message(kind: ReminderKind, artist_name: str | None, location: str | None) -> str:
    return (
        f"{artist_name or ARTIST_FALLBACK} plays in {REMINDER_LABELS[kind]}, "
        f"{location or LOCATION_FALLBACK}"
    )


class ReminderScheduler:
    """Turns an event's start time into one reminder row per offset kind."""

    def __init__(
        self,
        event_repo: EventRepository,
        artist_repo: ArtistRepository,
        reminder_repo: ReminderRepository,
    ) -> None:
        self._events = event_repo
        self._artists = artist_repo
        self._reminders = reminder_repo

    def schedule_for_event(self, event_id: str) -> list[Reminder]:
        """Create the reminders for a freshly created event.

        Returns the created reminders. Never raises: an unknown event is a
        silent no-op and store failures are logged, so that scheduling can
        not break the event-creation path that triggered it. Reminders whose
        time has already passed are still written and go out on the next
        dispatch sweep.
        """
        try:
            event = self._events.get(event_id)
            if event is None:
                return []

            created: list[Reminder] = []
            for kind in ReminderKind:
                reminder = self._build(event, kind)
                try:
                    self._reminders.add(reminder)
                except PersistenceConflictError:
                    logger.debug(f"Reminder {kind} already exists for event {event_id}")
                    continue
                created.append(reminder)
        except Exception:
            logger.exception(f"Failed to schedule reminders for event {event_id}")
            return []

        logger.info(f"Scheduled {len(created)} reminder(s) for event {event_id}")
        return created

    def reschedule_for_event(self, event_id: str) -> list[Reminder]:
        """Recompute unsent reminders from the event's current start time.

        Missing kinds are created; reminders already sent are left as they
        are. Returns every unsent reminder of the event after the update.
        """
        event = self._events.get(event_id)
        if event is None:
            return []

        for kind in ReminderKind:
            existing = self._reminders.get_for(event_id, kind)
            if existing is None:
                try:
                    self._reminders.add(self._build(event, kind))
                except PersistenceConflictError:
                    logger.debug(f"Reminder {kind} already exists for event {event_id}")
                continue
            fresh = self._build(event, kind)
            self._reminders.reschedule(existing.id, fresh.scheduled_for, fresh.message)

        pending = [r for r in self._reminders.list_for_event(event_id) if not r.is_sent]
        logger.info(f"Rescheduled {len(pending)} unsent reminder(s) for event {event_id}")
        return pending

    def _build(self, event: Event, kind: ReminderKind) -> Reminder:
        artist = self._artists.get(event.artist_id) if event.artist_id else None
        return Reminder(
            event_id=event.id,
            kind=kind,
            title=REMINDER_TITLE,
            message=render_message(kind, artist.name if artist else None, event.location),
            scheduled_for=event.start_time - REMINDER_OFFSETS[kind],
        )
