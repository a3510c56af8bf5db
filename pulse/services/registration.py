"""Registration engine - creates and removes participations.

Business rules:
- One participation per (user, event); the participation store enforces it.
- Only events that have not started accept registrations or cancellations.
- Free events are PAID on creation; priced events stay PENDING until a
  confirmed payment moves them to PAID.
- Confirmation notifications are best effort and never undo a write.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pulse.domain.errors import (
    AlreadyRegisteredError,
    EventAlreadyStartedError,
    NotFoundError,
    PersistenceConflictError,
    ensure_id,
)
from pulse.domain.models import (
    Event,
    NotificationType,
    Participation,
    PaymentStatus,
    RegistrationStatus,
)
from pulse.repos.memory import EventRepository, ParticipationRepository
from pulse.services.notifications import UserNotifier

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationService:
    """Service for registering users to events."""

    def __init__(
        self,
        event_repo: EventRepository,
        participation_repo: ParticipationRepository,
        notifier: UserNotifier,
        pending_ttl: timedelta | None = None,
    ) -> None:
        self._events = event_repo
        self._participations = participation_repo
        self._notifier = notifier
        self._pending_ttl = pending_ttl

    def register(self, user_id: str, event_id: str, now: datetime | None = None) -> Participation:
        """Register *user_id* for *event_id*.

        Raises:
            ValidationError: If the event id is malformed.
            NotFoundError: If the event does not exist.
            EventAlreadyStartedError: If the event start is not in the future.
            AlreadyRegisteredError: If the user already holds a participation.
        """
        now = now or _utcnow()
        event = self._get_event(event_id)
        self._ensure_not_started(event, now, "You cannot register for a past event")

        if self._participations.get_for(user_id, event.id) is not None:
            raise AlreadyRegisteredError()

        participation = Participation(
            user_id=user_id,
            event_id=event.id,
            payment_status=PaymentStatus.PAID if event.is_free else PaymentStatus.PENDING,
            amount_paid=event.price,
        )
        try:
            self._participations.add(participation)
        except PersistenceConflictError:
            # A concurrent request for the same pair committed first
            raise AlreadyRegisteredError() from None

        logger.info(
            f"User {user_id} registered for event {event.id} ({participation.payment_status})"
        )
        if participation.payment_status == PaymentStatus.PAID:
            self._notifier.notify(
                user_id,
                "Registration confirmed",
                f'You are registered for "{event.title}"',
                NotificationType.SUCCESS,
            )
        else:
            self._notifier.notify(
                user_id,
                "Registration pending payment",
                f'Complete your payment to confirm your place at "{event.title}"',
                NotificationType.INFO,
            )
        return participation

    def unregister(self, user_id: str, event_id: str, now: datetime | None = None) -> Participation:
        """Remove the user's participation for a future event.

        Raises:
            ValidationError: If the event id is malformed.
            NotFoundError: If there is no participation (or no event).
            EventAlreadyStartedError: If the event has already started.
        """
        now = now or _utcnow()
        ensure_id(event_id, "event ID")
        participation = self._participations.get_for(user_id, event_id)
        if participation is None:
            raise NotFoundError("You are not registered for this event")

        event = self._events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        self._ensure_not_started(event, now, "You cannot unregister from a past event")

        if not self._participations.delete(participation.id):
            raise NotFoundError("You are not registered for this event")

        logger.info(f"User {user_id} unregistered from event {event_id}")
        self._notifier.notify(
            user_id,
            "Unregistration confirmed",
            f'You are no longer registered for "{event.title}"',
            NotificationType.INFO,
        )
        return participation

    def registration_status(self, user_id: str | None, event_id: str) -> RegistrationStatus:
        if user_id is None:
            return RegistrationStatus(is_registered=False, requires_auth=True)
        participation = self._participations.get_for(user_id, event_id)
        return RegistrationStatus(
            is_registered=participation is not None,
            requires_auth=False,
            payment_status=participation.payment_status if participation else None,
        )

    def list_for_user(self, user_id: str) -> list[Participation]:
        return self._participations.list_for_user(user_id)

    def list_for_event(self, event_id: str) -> list[Participation]:
        self._get_event(event_id)
        return self._participations.list_for_event(event_id)

    def expire_stale_pending(
        self, now: datetime | None = None, ttl: timedelta | None = None
    ) -> int:
        """Delete PENDING participations older than the TTL; returns how many went."""
        ttl = ttl or self._pending_ttl
        if not ttl:
            return 0
        now = now or _utcnow()

        expired = 0
        for participation in self._participations.list_pending_before(now - ttl):
            # A payment confirmed meanwhile makes the row non-pending and skips it
            if not self._participations.delete_if_pending(participation.id):
                continue
            expired += 1
            event = self._events.get(participation.event_id)
            title = event.title if event else "an event"
            self._notifier.notify(
                participation.user_id,
                "Registration expired",
                f'Your unpaid registration for "{title}" has expired',
                NotificationType.WARNING,
            )

        if expired:
            logger.info(f"Expired {expired} unpaid registration(s)")
        return expired

    def _get_event(self, event_id: str) -> Event:
        ensure_id(event_id, "event ID")
        event = self._events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        return event

    @staticmethod
    def _ensure_not_started(event: Event, now: datetime, message: str) -> None:
        if event.start_time <= now:
            raise EventAlreadyStartedError(message)
