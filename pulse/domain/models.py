"""Domain models for the ticketing core."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import StrEnum

from pydantic import AwareDatetime, BaseModel, Field


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class ReminderKind(StrEnum):
    ONE_HOUR_BEFORE = "ONE_HOUR_BEFORE"
    TEN_MINUTES_BEFORE = "TEN_MINUTES_BEFORE"


REMINDER_OFFSETS: dict[ReminderKind, timedelta] = {
    ReminderKind.ONE_HOUR_BEFORE: timedelta(hours=1),
    ReminderKind.TEN_MINUTES_BEFORE: timedelta(minutes=10),
}

# Human label used in reminder messages and email subjects.
REMINDER_LABELS: dict[ReminderKind, str] = {
    ReminderKind.ONE_HOUR_BEFORE: "1h",
    ReminderKind.TEN_MINUTES_BEFORE: "10min",
}


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentIntentStatus(StrEnum):
    REQUIRES_CONFIRMATION = "requires_confirmation"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NotificationType(StrEnum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class SchedulerStatus(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Collaborator entities (owned by the CRUD side, read here)
# ---------------------------------------------------------------------------


class User(BaseModel):
    id: str = Field(default_factory=_new_id)
    email: str
    username: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Artist(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    start_time: AwareDatetime
    location: str | None = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "EUR"
    artist_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_free(self) -> bool:
        return self.price == 0


# ---------------------------------------------------------------------------
# Core records
# ---------------------------------------------------------------------------


class Reminder(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    kind: ReminderKind
    title: str
    message: str
    scheduled_for: AwareDatetime
    is_sent: bool = False
    sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Participation(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    event_id: str
    payment_status: PaymentStatus
    amount_paid: Decimal = Decimal("0")
    payment_intent_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class PaymentIntentRecord(BaseModel):
    """Local memo of a provider-side intent and who it was created for."""

    id: str
    event_id: str
    user_id: str | None = None
    amount: int
    currency: str
    status: PaymentIntentStatus = PaymentIntentStatus.REQUIRES_CONFIRMATION
    created_at: datetime = Field(default_factory=_utcnow)


class Notification(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    start_time: AwareDatetime
    location: str | None = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str | None = None
    artist_id: str | None = None


class EventUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    start_time: AwareDatetime | None = None
    location: str | None = None
    price: Decimal | None = Field(default=None, ge=0)


class ReminderCreateRequest(BaseModel):
    event_id: str
    kind: ReminderKind
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    scheduled_for: AwareDatetime


class RegistrationStatus(BaseModel):
    is_registered: bool
    requires_auth: bool
    payment_status: PaymentStatus | None = None


class PaymentIntentRequest(BaseModel):
    event_id: str


class PaymentIntentHandle(BaseModel):
    intent_id: str
    client_secret: str


class PaymentConfirmation(BaseModel):
    intent_id: str
    status: PaymentIntentStatus


class NotificationUpdateRequest(BaseModel):
    read: bool = True


class ReminderPayload(BaseModel):
    """What the email transport receives for one reminder send."""

    reminder_id: str
    event_id: str
    event_title: str
    event_start: datetime
    artist_name: str | None = None
    location: str | None = None
    time_until: str
    title: str
    message: str


class DispatchReport(BaseModel):
    ran_at: datetime
    reminders_sent: list[str] = Field(default_factory=list)
    recipient_failures: int = 0


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class ReminderPage(BaseModel):
    reminders: list[Reminder]
    pagination: Pagination
