"""Domain event handlers: wired up at application startup."""

from __future__ import annotations

import logging

from pulse.domain.bus import EventBus
from pulse.domain.events import EventCreated, EventDeleted, EventRescheduleRequested
from pulse.repos.memory import ParticipationRepository, ReminderRepository
from pulse.services.reminders import ReminderScheduler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires catalogue events to the reminder and participation stores."""

    def __init__(
        self,
        bus: EventBus,
        reminder_scheduler: ReminderScheduler,
        reminder_repo: ReminderRepository,
        participation_repo: ParticipationRepository,
    ) -> None:
        self.bus = bus
        self.reminder_scheduler = reminder_scheduler
        self.reminder_repo = reminder_repo
        self.participation_repo = participation_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventRescheduleRequested, self.on_reschedule_requested)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        # schedule_for_event swallows its own failures
        self.reminder_scheduler.schedule_for_event(event.event_id)

    def on_reschedule_requested(self, event: EventRescheduleRequested) -> None:
        self.reminder_scheduler.reschedule_for_event(event.event_id)

    def on_event_deleted(self, event: EventDeleted) -> None:
        reminders = self.reminder_repo.delete_for_event(event.event_id)
        participations = self.participation_repo.delete_for_event(event.event_id)
        logger.info(
            f"Event {event.event_id} deleted: removed {reminders} reminder(s) "
            f"and {participations} participation(s)"
        )
