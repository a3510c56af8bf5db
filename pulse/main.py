"""FastAPI application: entry point for the ticketing core."""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime

from pulse.core.config import get_settings
from pulse.domain.bus import EventBus
from pulse.domain.errors import DomainError, ErrorCode, NotFoundError, ensure_id
from pulse.domain.events import EventCreated, EventDeleted, EventRescheduleRequested
from pulse.domain.handlers import HandlerRegistry
from pulse.domain.models import (
    DispatchReport,
    Event,
    EventCreateRequest,
    EventUpdateRequest,
    Notification,
    NotificationUpdateRequest,
    Pagination,
    Participation,
    PaymentConfirmation,
    PaymentIntentHandle,
    PaymentIntentRequest,
    RegistrationStatus,
    Reminder,
    ReminderCreateRequest,
    ReminderKind,
    ReminderPage,
    User,
)
from pulse.repos.memory import (
    ArtistRepository,
    EventRepository,
    NotificationRepository,
    ParticipationRepository,
    PaymentIntentRepository,
    ReminderRepository,
    UserRepository,
)
from pulse.services.dispatcher import (
    AllUsersRecipients,
    EventParticipantsRecipients,
    ReminderDispatcher,
)
from pulse.services.email import build_email_transport
from pulse.services.notifications import UserNotifier
from pulse.services.payment_providers import build_payment_provider
from pulse.services.payments import PaymentBridge
from pulse.services.registration import RegistrationService
from pulse.services.reminders import ReminderScheduler
from pulse.services.scheduler_control import SchedulerControl

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
user_repo = UserRepository()
artist_repo = ArtistRepository()
event_repo = EventRepository()
reminder_repo = ReminderRepository()
participation_repo = ParticipationRepository()
payment_intent_repo = PaymentIntentRepository()
notification_repo = NotificationRepository()

email_transport = build_email_transport(settings)
payment_provider = build_payment_provider(settings)
notifier = UserNotifier(notification_repo)

if settings.REMINDER_RECIPIENTS == "participants":
    recipients = EventParticipantsRecipients(participation_repo, user_repo)
else:
    recipients = AllUsersRecipients(user_repo)

reminder_scheduler = ReminderScheduler(event_repo, artist_repo, reminder_repo)
reminder_dispatcher = ReminderDispatcher(
    reminder_repo, event_repo, artist_repo, recipients, email_transport
)
registration_service = RegistrationService(
    event_repo,
    participation_repo,
    notifier,
    pending_ttl=timedelta(minutes=settings.PENDING_PAYMENT_TTL_MINUTES) or None,
)
payment_bridge = PaymentBridge(
    event_repo, participation_repo, payment_intent_repo, payment_provider, notifier
)

sweeps = {"reminder_dispatch": reminder_dispatcher.dispatch_due}
if settings.PENDING_PAYMENT_TTL_MINUTES > 0:
    sweeps["pending_payment_cleanup"] = registration_service.expire_stale_pending
scheduler_control = SchedulerControl(sweeps, interval_seconds=settings.REMINDER_TICK_SECONDS)

handler_registry = HandlerRegistry(
    bus=event_bus,
    reminder_scheduler=reminder_scheduler,
    reminder_repo=reminder_repo,
    participation_repo=participation_repo,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_AUTOSTART:
        scheduler_control.start()
    yield
    scheduler_control.stop()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.TRANSPORT_FAILURE: 502,
}


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 400),
        content={"detail": exc.message, "code": exc.code.value},
    )


# ── Identity (issued elsewhere; resolved from the X-User-Id header) ───


def current_user_optional(x_user_id: str | None = Header(default=None)) -> User | None:
    if not x_user_id:
        return None
    return user_repo.get(x_user_id)


def current_user(user: User | None = Depends(current_user_optional)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="You must be signed in")
    return user


def admin_user(user: User = Depends(current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return user


def _get_event(event_id: str) -> Event:
    ensure_id(event_id, "event ID")
    event = event_repo.get(event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return event


# ── Registration ──────────────────────────────────────────────────────


@app.post("/events/{event_id}/register", response_model=Participation, status_code=201)
def register(event_id: str, user: User = Depends(current_user)) -> Participation:
    """Register the current user; PAID for free events, PENDING otherwise."""
    return registration_service.register(user.id, event_id)


@app.delete("/events/{event_id}/register")
def unregister(event_id: str, user: User = Depends(current_user)) -> dict:
    registration_service.unregister(user.id, event_id)
    return {"message": "Unregistration successful"}


@app.get("/events/{event_id}/register", response_model=RegistrationStatus)
def registration_status(
    event_id: str, user: User | None = Depends(current_user_optional)
) -> RegistrationStatus:
    return registration_service.registration_status(user.id if user else None, event_id)


@app.get("/me/registrations", response_model=list[Participation])
def my_registrations(user: User = Depends(current_user)) -> list[Participation]:
    return registration_service.list_for_user(user.id)


@app.get("/events/{event_id}/participants", response_model=list[Participation])
def list_participants(event_id: str, _: User = Depends(admin_user)) -> list[Participation]:
    return registration_service.list_for_event(event_id)


# ── Payments ──────────────────────────────────────────────────────────


@app.post("/payments/intent", response_model=PaymentIntentHandle)
def create_payment_intent(
    body: PaymentIntentRequest, user: User = Depends(current_user)
) -> PaymentIntentHandle:
    try:
        return payment_bridge.begin_payment(body.event_id, user_id=user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=400, detail=exc.message)


@app.post("/payments/{intent_id}/confirm", response_model=PaymentConfirmation)
def confirm_payment(intent_id: str, user: User = Depends(current_user)) -> PaymentConfirmation:
    record = payment_intent_repo.get(intent_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Payment intent not found")
    if record.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")
    status = payment_bridge.confirm_payment(intent_id)
    return PaymentConfirmation(intent_id=intent_id, status=status)


@app.post("/payments/webhook")
async def payment_webhook(
    request: Request, stripe_signature: str | None = Header(default=None)
) -> dict:
    """Provider callback for payment_intent.succeeded / payment_failed."""
    payload = await request.body()
    payment_bridge.handle_webhook(payload, stripe_signature)
    return {"received": True}


# ── Scheduler control ─────────────────────────────────────────────────


@app.post("/scheduler/start")
def start_scheduler(_: User = Depends(admin_user)) -> dict:
    scheduler_control.start()
    return {"message": "Scheduler started"}


@app.post("/scheduler/stop")
def stop_scheduler(_: User = Depends(admin_user)) -> dict:
    scheduler_control.stop()
    return {"message": "Scheduler stopped"}


@app.get("/scheduler/status")
def scheduler_status() -> dict:
    return {
        "status": scheduler_control.status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/scheduler/tick", response_model=DispatchReport)
def tick(now: AwareDatetime | None = None, _: User = Depends(admin_user)) -> DispatchReport:
    """Run one dispatch sweep immediately.

    Pass *now* as a query param to control the clock. Defaults to
    ``datetime.now(timezone.utc)`` when omitted.
    """
    return reminder_dispatcher.dispatch_due(now)


# ── Notifications and reminders ───────────────────────────────────────


@app.get("/notifications", response_model=list[Notification])
def list_notifications(
    user_id: str | None = None, user: User = Depends(current_user)
) -> list[Notification]:
    """Admins may read any user's notifications; everyone else gets their own."""
    target = user_id if user.is_admin and user_id else user.id
    return notifier.list_for_user(target)


@app.put("/notifications/{notification_id}", response_model=Notification)
def update_notification(
    notification_id: str,
    body: NotificationUpdateRequest,
    user: User = Depends(current_user),
) -> Notification:
    return notifier.mark_read(notification_id, user, body.read)


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, user: User = Depends(current_user)) -> dict:
    notifier.delete(notification_id, user)
    return {"message": "Notification deleted"}


@app.get("/reminders", response_model=ReminderPage)
def list_reminders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    kind: ReminderKind | None = None,
    is_sent: bool | None = None,
    _: User = Depends(admin_user),
) -> ReminderPage:
    matches = reminder_repo.search(kind=kind, is_sent=is_sent)
    total = len(matches)
    total_pages = math.ceil(total / limit)
    start = (page - 1) * limit
    return ReminderPage(
        reminders=matches[start : start + limit],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        ),
    )


@app.post("/reminders", response_model=Reminder, status_code=201)
def create_reminder(body: ReminderCreateRequest, _: User = Depends(admin_user)) -> Reminder:
    """Manually add a reminder; at most one per event and kind."""
    event = _get_event(body.event_id)
    reminder = Reminder(
        event_id=event.id,
        kind=body.kind,
        title=body.title,
        message=body.message,
        scheduled_for=body.scheduled_for,
    )
    reminder_repo.add(reminder)
    return reminder


# ── Events (thin stand-in for the catalogue back office) ──────────────


@app.get("/events", response_model=list[Event])
def list_events() -> list[Event]:
    return event_repo.list_all()


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    return _get_event(event_id)


@app.post("/events", response_model=Event, status_code=201)
def create_event(body: EventCreateRequest, _: User = Depends(admin_user)) -> Event:
    if body.artist_id is not None and artist_repo.get(body.artist_id) is None:
        raise NotFoundError("Artist not found")
    event = Event(
        title=body.title,
        start_time=body.start_time,
        location=body.location,
        price=body.price,
        currency=body.currency or settings.DEFAULT_CURRENCY,
        artist_id=body.artist_id,
    )
    event_repo.add(event)

    # Schedules the reminders; failures there never fail this request
    event_bus.publish(EventCreated(event_id=event.id))
    return event


@app.patch("/events/{event_id}", response_model=Event)
def update_event(
    event_id: str, body: EventUpdateRequest, _: User = Depends(admin_user)
) -> Event:
    """Edit an event. Reminder times are not recomputed here."""
    event = _get_event(event_id)
    updated = event.model_copy(update=body.model_dump(exclude_unset=True, exclude_none=True))
    event_repo.replace(updated)
    if updated.start_time != event.start_time and reminder_repo.list_for_event(event_id):
        logger.warning(
            f"Start time of event {event_id} changed; its reminders keep their old "
            "times until POST /events/{id}/reminders/reschedule is called"
        )
    return updated


@app.post("/events/{event_id}/reminders/reschedule", response_model=list[Reminder])
def reschedule_reminders(event_id: str, _: User = Depends(admin_user)) -> list[Reminder]:
    _get_event(event_id)
    event_bus.publish(EventRescheduleRequested(event_id=event_id))
    return [r for r in reminder_repo.list_for_event(event_id) if not r.is_sent]


@app.delete("/events/{event_id}")
def delete_event(event_id: str, _: User = Depends(admin_user)) -> dict:
    _get_event(event_id)
    event_repo.delete(event_id)
    event_bus.publish(EventDeleted(event_id=event_id))
    return {"message": "Event deleted"}
