"""API tests for registration, payments, scheduler control and notifications."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from pulse.domain.models import Event, PaymentStatus, ReminderKind, User, UserRole
from pulse.main import (
    app,
    artist_repo,
    email_transport,
    event_repo,
    notification_repo,
    participation_repo,
    payment_intent_repo,
    payment_provider,
    reminder_repo,
    reminder_scheduler,
    scheduler_control,
    user_repo,
)

_REPOS = (
    user_repo,
    artist_repo,
    event_repo,
    reminder_repo,
    participation_repo,
    payment_intent_repo,
    notification_repo,
)


@pytest.fixture(autouse=True)
def _clear_repos():
    for repo in _REPOS:
        repo.clear()
    email_transport.sent.clear()
    yield
    scheduler_control.stop()
    for repo in _REPOS:
        repo.clear()
    email_transport.sent.clear()


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def alice() -> User:
    user = User(email="alice@example.com", username="alice")
    user_repo.add(user)
    return user


@pytest.fixture()
def admin() -> User:
    user = User(email="admin@example.com", username="admin", role=UserRole.ADMIN)
    user_repo.add(user)
    return user


def _as(user: User) -> dict[str, str]:
    return {"X-User-Id": user.id}


def _seed_event(**overrides) -> Event:
    defaults = dict(
        title="Main Stage Show",
        start_time=datetime.now(timezone.utc) + timedelta(days=2),
        location="Main Stage",
    )
    defaults.update(overrides)
    event = Event(**defaults)
    event_repo.add(event)
    return event


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_free_event(client: TestClient, alice: User):
    event = _seed_event()

    resp = client.post(f"/events/{event.id}/register", headers=_as(alice))

    assert resp.status_code == 201
    data = resp.json()
    assert data["payment_status"] == "PAID"
    assert data["user_id"] == alice.id

    status = client.get(f"/events/{event.id}/register", headers=_as(alice)).json()
    assert status["is_registered"] is True
    assert status["payment_status"] == "PAID"


def test_register_requires_sign_in(client: TestClient):
    event = _seed_event()

    resp = client.post(f"/events/{event.id}/register")

    assert resp.status_code == 401
    assert participation_repo.list_all() == []


def test_register_twice_returns_already_registered(client: TestClient, alice: User):
    event = _seed_event()
    client.post(f"/events/{event.id}/register", headers=_as(alice))

    resp = client.post(f"/events/{event.id}/register", headers=_as(alice))

    assert resp.status_code == 400
    assert resp.json()["code"] == "ALREADY_REGISTERED"
    assert len(participation_repo.list_for_event(event.id)) == 1


def test_register_unknown_event(client: TestClient, alice: User):
    resp = client.post(
        "/events/0b7d6a36-1d3f-4c55-9d7e-1f1f1f1f1f1f/register", headers=_as(alice)
    )

    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


def test_register_malformed_event_id(client: TestClient, alice: User):
    resp = client.post("/events/not-a-uuid/register", headers=_as(alice))

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_register_started_event(client: TestClient, alice: User):
    event = _seed_event(start_time=datetime.now(timezone.utc) - timedelta(minutes=5))

    resp = client.post(f"/events/{event.id}/register", headers=_as(alice))

    assert resp.status_code == 400
    assert resp.json()["code"] == "EVENT_ALREADY_STARTED"


def test_unregister(client: TestClient, alice: User):
    event = _seed_event()
    client.post(f"/events/{event.id}/register", headers=_as(alice))

    resp = client.delete(f"/events/{event.id}/register", headers=_as(alice))

    assert resp.status_code == 200
    assert resp.json() == {"message": "Unregistration successful"}
    assert participation_repo.get_for(alice.id, event.id) is None


def test_unregister_when_not_registered(client: TestClient, alice: User):
    event = _seed_event()

    resp = client.delete(f"/events/{event.id}/register", headers=_as(alice))

    assert resp.status_code == 404


def test_status_for_anonymous_caller(client: TestClient):
    event = _seed_event()

    resp = client.get(f"/events/{event.id}/register")

    assert resp.status_code == 200
    assert resp.json()["requires_auth"] is True
    assert resp.json()["is_registered"] is False


def test_my_registrations_and_participants(client: TestClient, alice: User, admin: User):
    event = _seed_event()
    client.post(f"/events/{event.id}/register", headers=_as(alice))

    mine = client.get("/me/registrations", headers=_as(alice)).json()
    assert [p["event_id"] for p in mine] == [event.id]

    assert client.get(f"/events/{event.id}/participants", headers=_as(alice)).status_code == 403
    participants = client.get(f"/events/{event.id}/participants", headers=_as(admin)).json()
    assert [p["user_id"] for p in participants] == [alice.id]


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def test_paid_registration_flow(client: TestClient, alice: User):
    event = _seed_event(price=Decimal("25.50"))

    resp = client.post(f"/events/{event.id}/register", headers=_as(alice))
    assert resp.json()["payment_status"] == "PENDING"

    intent = client.post(
        "/payments/intent", json={"event_id": event.id}, headers=_as(alice)
    ).json()
    assert intent["client_secret"]
    assert payment_intent_repo.get(intent["intent_id"]).amount == 2550

    resp = client.post(f"/payments/{intent['intent_id']}/confirm", headers=_as(alice))

    assert resp.status_code == 200
    assert resp.json()["status"] == "succeeded"
    assert participation_repo.get_for(alice.id, event.id).payment_status == PaymentStatus.PAID


def test_payment_intent_for_free_event(client: TestClient, alice: User):
    event = _seed_event()

    resp = client.post("/payments/intent", json={"event_id": event.id}, headers=_as(alice))

    assert resp.status_code == 400
    assert resp.json()["detail"] == "This event is free"


def test_payment_intent_for_unknown_event(client: TestClient, alice: User):
    resp = client.post(
        "/payments/intent",
        json={"event_id": "0b7d6a36-1d3f-4c55-9d7e-1f1f1f1f1f1f"},
        headers=_as(alice),
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Event not found"


def test_confirm_someone_elses_intent(client: TestClient, alice: User):
    bob = User(email="bob@example.com", username="bob")
    user_repo.add(bob)
    event = _seed_event(price=Decimal("10"))
    intent = client.post(
        "/payments/intent", json={"event_id": event.id}, headers=_as(alice)
    ).json()

    resp = client.post(f"/payments/{intent['intent_id']}/confirm", headers=_as(bob))

    assert resp.status_code == 403


def test_confirm_unknown_intent(client: TestClient, alice: User):
    resp = client.post("/payments/pi_missing/confirm", headers=_as(alice))

    assert resp.status_code == 404


def test_declined_payment_stays_pending(client: TestClient, alice: User):
    event = _seed_event(price=Decimal("10"))
    client.post(f"/events/{event.id}/register", headers=_as(alice))
    intent = client.post(
        "/payments/intent", json={"event_id": event.id}, headers=_as(alice)
    ).json()
    payment_provider.decline(intent["intent_id"])

    resp = client.post(f"/payments/{intent['intent_id']}/confirm", headers=_as(alice))

    assert resp.json()["status"] == "failed"
    assert participation_repo.get_for(alice.id, event.id).payment_status == PaymentStatus.PENDING


def _succeeded_webhook(intent_id: str) -> bytes:
    return json.dumps(
        {"type": "payment_intent.succeeded", "data": {"object": {"id": intent_id}}}
    ).encode()


def _pending_paid_event(client: TestClient, user: User) -> tuple[Event, str]:
    event = _seed_event(price=Decimal("25"))
    client.post(f"/events/{event.id}/register", headers=_as(user))
    intent = client.post(
        "/payments/intent", json={"event_id": event.id}, headers=_as(user)
    ).json()
    return event, intent["intent_id"]


def test_signed_webhook_marks_paid(client: TestClient, alice: User):
    event, intent_id = _pending_paid_event(client, alice)
    body = _succeeded_webhook(intent_id)

    resp = client.post(
        "/payments/webhook",
        content=body,
        headers={"content-type": "application/json", "stripe-signature": payment_provider.sign(body)},
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert participation_repo.get_for(alice.id, event.id).payment_status == PaymentStatus.PAID


def test_unsigned_webhook_is_rejected(client: TestClient, alice: User):
    event, intent_id = _pending_paid_event(client, alice)

    resp = client.post(
        "/payments/webhook",
        content=_succeeded_webhook(intent_id),
        headers={"content-type": "application/json"},
    )

    assert resp.status_code == 400
    assert participation_repo.get_for(alice.id, event.id).payment_status == PaymentStatus.PENDING


def test_webhook_with_forged_signature_is_rejected(client: TestClient, alice: User):
    event, intent_id = _pending_paid_event(client, alice)

    resp = client.post(
        "/payments/webhook",
        content=_succeeded_webhook(intent_id),
        headers={"content-type": "application/json", "stripe-signature": "t=1,v1=deadbeef"},
    )

    assert resp.status_code == 400
    assert participation_repo.get_for(alice.id, event.id).payment_status == PaymentStatus.PENDING


def test_webhook_rejects_garbage(client: TestClient):
    body = b"not json"
    resp = client.post(
        "/payments/webhook",
        content=body,
        headers={"content-type": "application/json", "stripe-signature": payment_provider.sign(body)},
    )

    assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Scheduler control
# ---------------------------------------------------------------------------


def test_scheduler_start_stop_status(client: TestClient, admin: User):
    assert client.get("/scheduler/status").json()["status"] == "stopped"

    resp = client.post("/scheduler/start", headers=_as(admin))
    assert resp.json() == {"message": "Scheduler started"}
    assert client.get("/scheduler/status").json()["status"] == "running"

    # A second start replaces the timer rather than adding one
    client.post("/scheduler/start", headers=_as(admin))
    assert scheduler_control.active_jobs.count("reminder_dispatch") == 1

    resp = client.post("/scheduler/stop", headers=_as(admin))
    assert resp.json() == {"message": "Scheduler stopped"}
    status = client.get("/scheduler/status").json()
    assert status["status"] == "stopped"
    assert status["timestamp"]


def test_scheduler_control_is_admin_only(client: TestClient, alice: User):
    assert client.post("/scheduler/start", headers=_as(alice)).status_code == 403
    assert client.post("/scheduler/stop", headers=_as(alice)).status_code == 403
    assert client.post("/scheduler/start").status_code == 401
    assert client.get("/scheduler/status").json()["status"] == "stopped"


def test_tick_dispatches_due_reminders(client: TestClient, alice: User, admin: User):
    start = datetime(2026, 7, 21, 20, 0, tzinfo=timezone.utc)
    event = _seed_event(start_time=start)

    reminder_scheduler.schedule_for_event(event.id)

    resp = client.post(
        "/scheduler/tick", params={"now": "2026-07-21T19:00:30Z"}, headers=_as(admin)
    )

    assert resp.status_code == 200
    hour = reminder_repo.get_for(event.id, ReminderKind.ONE_HOUR_BEFORE)
    assert resp.json()["reminders_sent"] == [hour.id]
    recipients = sorted(r for r, _ in email_transport.sent)
    assert recipients == ["admin@example.com", "alice@example.com"]

    again = client.post(
        "/scheduler/tick", params={"now": "2026-07-21T19:00:30Z"}, headers=_as(admin)
    )
    assert again.json()["reminders_sent"] == []


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def test_registration_notification_lifecycle(client: TestClient, alice: User):
    event = _seed_event()
    client.post(f"/events/{event.id}/register", headers=_as(alice))

    [notification] = client.get("/notifications", headers=_as(alice)).json()
    assert notification["title"] == "Registration confirmed"
    assert notification["read"] is False

    resp = client.put(
        f"/notifications/{notification['id']}", json={"read": True}, headers=_as(alice)
    )
    assert resp.json()["read"] is True

    resp = client.delete(f"/notifications/{notification['id']}", headers=_as(alice))
    assert resp.status_code == 200
    assert client.get("/notifications", headers=_as(alice)).json() == []


def test_notifications_are_private(client: TestClient, alice: User, admin: User):
    bob = User(email="bob@example.com", username="bob")
    user_repo.add(bob)
    event = _seed_event()
    client.post(f"/events/{event.id}/register", headers=_as(alice))
    [notification] = client.get("/notifications", headers=_as(alice)).json()

    assert client.get("/notifications", headers=_as(bob)).json() == []
    resp = client.delete(f"/notifications/{notification['id']}", headers=_as(bob))
    assert resp.status_code == 403

    as_admin = client.get(
        "/notifications", params={"user_id": alice.id}, headers=_as(admin)
    ).json()
    assert [n["id"] for n in as_admin] == [notification["id"]]


# ---------------------------------------------------------------------------
# Events and reminders
# ---------------------------------------------------------------------------


def test_create_event_schedules_two_reminders(client: TestClient, admin: User):
    start = datetime.now(timezone.utc) + timedelta(days=3)

    resp = client.post(
        "/events",
        json={"title": "Main Stage Show", "start_time": start.isoformat(), "location": "Main Stage"},
        headers=_as(admin),
    )

    assert resp.status_code == 201
    event_id = resp.json()["id"]
    kinds = sorted(r.kind for r in reminder_repo.list_for_event(event_id))
    assert kinds == [ReminderKind.ONE_HOUR_BEFORE, ReminderKind.TEN_MINUTES_BEFORE]


def test_create_event_is_admin_only(client: TestClient, alice: User):
    resp = client.post(
        "/events",
        json={"title": "x", "start_time": datetime.now(timezone.utc).isoformat()},
        headers=_as(alice),
    )

    assert resp.status_code == 403
    assert event_repo.list_all() == []


def test_patch_then_reschedule(client: TestClient, admin: User):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    event_id = client.post(
        "/events",
        json={"title": "Main Stage Show", "start_time": start.isoformat()},
        headers=_as(admin),
    ).json()["id"]
    moved = start + timedelta(hours=5)

    client.patch(
        f"/events/{event_id}", json={"start_time": moved.isoformat()}, headers=_as(admin)
    )
    stale = reminder_repo.get_for(event_id, ReminderKind.ONE_HOUR_BEFORE)
    assert stale.scheduled_for == start - timedelta(hours=1)

    resp = client.post(f"/events/{event_id}/reminders/reschedule", headers=_as(admin))

    assert resp.status_code == 200
    assert len(resp.json()) == 2
    fresh = reminder_repo.get_for(event_id, ReminderKind.ONE_HOUR_BEFORE)
    assert fresh.scheduled_for == moved - timedelta(hours=1)


def test_delete_event_cascades(client: TestClient, alice: User, admin: User):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    event_id = client.post(
        "/events",
        json={"title": "Main Stage Show", "start_time": start.isoformat()},
        headers=_as(admin),
    ).json()["id"]
    client.post(f"/events/{event_id}/register", headers=_as(alice))

    resp = client.delete(f"/events/{event_id}", headers=_as(admin))

    assert resp.status_code == 200
    assert reminder_repo.list_for_event(event_id) == []
    assert participation_repo.list_for_event(event_id) == []
    assert client.get(f"/events/{event_id}").status_code == 404


def test_list_and_create_reminders(client: TestClient, admin: User):
    event = _seed_event()
    when = datetime.now(timezone.utc) + timedelta(days=1)

    resp = client.post(
        "/reminders",
        json={
            "event_id": event.id,
            "kind": "ONE_HOUR_BEFORE",
            "title": "Event reminder",
            "message": "Doors open soon",
            "scheduled_for": when.isoformat(),
        },
        headers=_as(admin),
    )
    assert resp.status_code == 201

    duplicate = client.post(
        "/reminders",
        json={
            "event_id": event.id,
            "kind": "ONE_HOUR_BEFORE",
            "title": "Event reminder",
            "message": "Again",
            "scheduled_for": when.isoformat(),
        },
        headers=_as(admin),
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "PERSISTENCE_CONFLICT"

    page = client.get(
        "/reminders", params={"kind": "ONE_HOUR_BEFORE", "is_sent": False}, headers=_as(admin)
    ).json()
    assert page["pagination"]["total"] == 1
    assert page["pagination"]["has_next_page"] is False
    assert page["reminders"][0]["message"] == "Doors open soon"


# ---------------------------------------------------------------------------
# Timezones
# ---------------------------------------------------------------------------


def test_event_without_timezone_is_rejected(client: TestClient, admin: User):
    naive = (datetime.now(timezone.utc) + timedelta(minutes=5)).replace(tzinfo=None)

    resp = client.post(
        "/events",
        json={"title": "Late Show", "start_time": naive.isoformat()},
        headers=_as(admin),
    )

    assert resp.status_code == 422
    assert event_repo.list_all() == []
    assert reminder_repo.list_all() == []


def test_patch_without_timezone_is_rejected(client: TestClient, admin: User):
    event = _seed_event()
    naive = (event.start_time + timedelta(hours=1)).replace(tzinfo=None)

    resp = client.patch(
        f"/events/{event.id}", json={"start_time": naive.isoformat()}, headers=_as(admin)
    )

    assert resp.status_code == 422
    assert event_repo.get(event.id).start_time == event.start_time


def test_reminder_without_timezone_is_rejected(client: TestClient, admin: User):
    event = _seed_event()

    resp = client.post(
        "/reminders",
        json={
            "event_id": event.id,
            "kind": "ONE_HOUR_BEFORE",
            "title": "Event reminder",
            "message": "Doors open soon",
            "scheduled_for": "2026-07-21T19:00:00",
        },
        headers=_as(admin),
    )

    assert resp.status_code == 422
    assert reminder_repo.list_all() == []


def test_tick_without_timezone_is_rejected(client: TestClient, admin: User):
    resp = client.post(
        "/scheduler/tick", params={"now": "2026-07-21T19:00:30"}, headers=_as(admin)
    )

    assert resp.status_code == 422


def test_rejected_naive_event_does_not_block_registration_or_dispatch(
    client: TestClient, alice: User, admin: User
):
    start = datetime.now(timezone.utc) + timedelta(minutes=30)
    created = client.post(
        "/events",
        json={"title": "Soon Show", "start_time": start.isoformat()},
        headers=_as(admin),
    )
    client.post(
        "/events",
        json={"title": "Late Show", "start_time": start.replace(tzinfo=None).isoformat()},
        headers=_as(admin),
    )
    event_id = created.json()["id"]

    resp = client.post(f"/events/{event_id}/register", headers=_as(alice))
    assert resp.status_code == 201

    report = client.post("/scheduler/tick", headers=_as(admin)).json()

    hour = reminder_repo.get_for(event_id, ReminderKind.ONE_HOUR_BEFORE)
    assert report["reminders_sent"] == [hour.id]
    assert reminder_repo.get(hour.id).is_sent
