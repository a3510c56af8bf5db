"""In-memory stores for the catalogue, reminders, participations and notifications.

Each store guards its dict with a lock and hands out copies, so a record only
changes through the store's own methods. Uniqueness checks happen inside the
same critical section as the insert, which makes them the stores'
equivalent of a database unique constraint: two racing inserts for the same
key cannot both succeed.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel

from pulse.domain.errors import PersistenceConflictError
from pulse.domain.models import (
    Artist,
    Event,
    Notification,
    Participation,
    PaymentIntentRecord,
    PaymentIntentStatus,
    PaymentStatus,
    Reminder,
    ReminderKind,
    User,
)


T = TypeVar("T", bound=BaseModel)


class _KeyedStore(Generic[T]):
    """Dict-backed store keyed by the record's ``id``."""

    def __init__(self) -> None:
        self._store: dict[str, T] = {}
        self._lock = threading.Lock()

    def get(self, record_id: str) -> T | None:
        with self._lock:
            record = self._store.get(record_id)
            return record.model_copy() if record is not None else None

    def list_all(self) -> list[T]:
        with self._lock:
            return [r.model_copy() for r in self._store.values()]

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._store.pop(record_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def _put(self, record: T) -> None:
        # Caller holds the lock
        self._store[record.id] = record.model_copy()

    def _select(self, predicate) -> list[T]:
        with self._lock:
            return [r.model_copy() for r in self._store.values() if predicate(r)]


# ---------------------------------------------------------------------------
# Catalogue (owned by the CRUD side; the core only reads it)
# ---------------------------------------------------------------------------


class UserRepository(_KeyedStore[User]):
    def add(self, user: User) -> None:
        with self._lock:
            self._put(user)


class ArtistRepository(_KeyedStore[Artist]):
    def add(self, artist: Artist) -> None:
        with self._lock:
            self._put(artist)


class EventRepository(_KeyedStore[Event]):
    def add(self, event: Event) -> None:
        with self._lock:
            self._put(event)

    def replace(self, event: Event) -> None:
        with self._lock:
            if event.id in self._store:
                self._put(event)

    def list_all(self) -> list[Event]:
        return sorted(super().list_all(), key=lambda e: e.start_time)


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class ReminderRepository(_KeyedStore[Reminder]):
    """Reminder rows, unique per (event_id, kind)."""

    def add(self, reminder: Reminder) -> None:
        with self._lock:
            for existing in self._store.values():
                if existing.event_id == reminder.event_id and existing.kind == reminder.kind:
                    raise PersistenceConflictError(
                        f"Reminder {reminder.kind} already exists for event {reminder.event_id}"
                    )
            self._put(reminder)

    def get_for(self, event_id: str, kind: ReminderKind) -> Reminder | None:
        matches = self._select(lambda r: r.event_id == event_id and r.kind == kind)
        return matches[0] if matches else None

    def list_for_event(self, event_id: str) -> list[Reminder]:
        items = self._select(lambda r: r.event_id == event_id)
        return sorted(items, key=lambda r: r.scheduled_for)

    def list_due(self, now: datetime) -> list[Reminder]:
        due = self._select(lambda r: not r.is_sent and r.scheduled_for <= now)
        return sorted(due, key=lambda r: r.scheduled_for)

    def search(
        self, kind: ReminderKind | None = None, is_sent: bool | None = None
    ) -> list[Reminder]:
        """Return reminders matching the filters, newest first."""
        items = self._select(
            lambda r: (kind is None or r.kind == kind) and (is_sent is None or r.is_sent == is_sent)
        )
        return sorted(items, key=lambda r: r.created_at, reverse=True)

    def mark_sent(self, reminder_id: str, sent_at: datetime) -> bool:
        """Flip an unsent reminder to sent. Returns False if it was already sent."""
        with self._lock:
            reminder = self._store.get(reminder_id)
            if reminder is None or reminder.is_sent:
                return False
            reminder.is_sent = True
            reminder.sent_at = sent_at
            return True

    def reschedule(self, reminder_id: str, scheduled_for: datetime, message: str) -> bool:
        """Move an unsent reminder. Sent reminders are left alone."""
        with self._lock:
            reminder = self._store.get(reminder_id)
            if reminder is None or reminder.is_sent:
                return False
            reminder.scheduled_for = scheduled_for
            reminder.message = message
            return True

    def delete_for_event(self, event_id: str) -> int:
        with self._lock:
            doomed = [rid for rid, r in self._store.items() if r.event_id == event_id]
            for rid in doomed:
                del self._store[rid]
        return len(doomed)


# ---------------------------------------------------------------------------
# Participations
# ---------------------------------------------------------------------------


class ParticipationRepository(_KeyedStore[Participation]):
    """Participation rows, unique per (user_id, event_id)."""

    def add(self, participation: Participation) -> None:
        with self._lock:
            for existing in self._store.values():
                if (
                    existing.user_id == participation.user_id
                    and existing.event_id == participation.event_id
                ):
                    raise PersistenceConflictError(
                        f"User {participation.user_id} already holds a participation "
                        f"for event {participation.event_id}"
                    )
            self._put(participation)

    def get_for(self, user_id: str, event_id: str) -> Participation | None:
        matches = self._select(lambda p: p.user_id == user_id and p.event_id == event_id)
        return matches[0] if matches else None

    def list_for_user(self, user_id: str) -> list[Participation]:
        items = self._select(lambda p: p.user_id == user_id)
        return sorted(items, key=lambda p: p.created_at)

    def list_for_event(self, event_id: str) -> list[Participation]:
        items = self._select(lambda p: p.event_id == event_id)
        return sorted(items, key=lambda p: p.created_at)

    def list_pending_before(self, cutoff: datetime) -> list[Participation]:
        return self._select(
            lambda p: p.payment_status == PaymentStatus.PENDING and p.created_at < cutoff
        )

    def mark_paid(self, participation_id: str, payment_intent_id: str | None) -> Participation | None:
        """Move a PENDING participation to PAID; returns None if it was not pending."""
        with self._lock:
            participation = self._store.get(participation_id)
            if participation is None or participation.payment_status != PaymentStatus.PENDING:
                return None
            participation.payment_status = PaymentStatus.PAID
            participation.payment_intent_id = payment_intent_id
            return participation.model_copy()

    def delete_if_pending(self, participation_id: str) -> bool:
        with self._lock:
            participation = self._store.get(participation_id)
            if participation is None or participation.payment_status != PaymentStatus.PENDING:
                return False
            del self._store[participation_id]
            return True

    def delete_for_event(self, event_id: str) -> int:
        with self._lock:
            doomed = [pid for pid, p in self._store.items() if p.event_id == event_id]
            for pid in doomed:
                del self._store[pid]
        return len(doomed)


# ---------------------------------------------------------------------------
# Payment intents and notifications
# ---------------------------------------------------------------------------


class PaymentIntentRepository(_KeyedStore[PaymentIntentRecord]):
    def add(self, record: PaymentIntentRecord) -> None:
        with self._lock:
            self._put(record)

    def set_status(self, intent_id: str, status: PaymentIntentStatus) -> PaymentIntentRecord | None:
        with self._lock:
            record = self._store.get(intent_id)
            if record is None:
                return None
            record.status = status
            return record.model_copy()


class NotificationRepository(_KeyedStore[Notification]):
    def add(self, notification: Notification) -> None:
        with self._lock:
            self._put(notification)

    def list_for_user(self, user_id: str) -> list[Notification]:
        items = self._select(lambda n: n.user_id == user_id)
        return sorted(items, key=lambda n: n.created_at, reverse=True)

    def set_read(self, notification_id: str, read: bool) -> Notification | None:
        with self._lock:
            notification = self._store.get(notification_id)
            if notification is None:
                return None
            notification.read = read
            return notification.model_copy()
