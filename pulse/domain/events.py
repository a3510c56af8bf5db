"""Domain events emitted around the event catalogue."""

from __future__ import annotations

from pydantic import BaseModel


class EventCreated(BaseModel):
    """Fired when a new Event is persisted."""

    event_id: str


class EventRescheduleRequested(BaseModel):
    """Fired when an admin explicitly asks for reminder times to be recomputed."""

    event_id: str


class EventDeleted(BaseModel):
    """Fired after an Event has been removed from the catalogue."""

    event_id: str
