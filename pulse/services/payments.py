"""Payment intent bridge between participations and the payment provider.

The bridge never creates participations. ``register`` creates the PENDING
row; the bridge only sizes an intent to the event price, remembers who the
intent is for, and flips the matching PENDING row to PAID once the provider
reports success.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from pulse.domain.errors import (
    AlreadyRegisteredError,
    NotFoundError,
    TransportFailureError,
    ValidationError,
    ensure_id,
)
from pulse.domain.models import (
    NotificationType,
    Participation,
    PaymentIntentHandle,
    PaymentIntentRecord,
    PaymentIntentStatus,
    PaymentStatus,
)
from pulse.repos.memory import (
    EventRepository,
    ParticipationRepository,
    PaymentIntentRepository,
)
from pulse.services.notifications import UserNotifier
from pulse.services.payment_providers import PaymentProvider

logger = logging.getLogger(__name__)

SUCCEEDED_WEBHOOK = "payment_intent.succeeded"
FAILED_WEBHOOK = "payment_intent.payment_failed"


def to_minor_units(amount: Decimal) -> int:
    """Convert a price to the provider's smallest currency unit (cents)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentBridge:
    def __init__(
        self,
        event_repo: EventRepository,
        participation_repo: ParticipationRepository,
        intent_repo: PaymentIntentRepository,
        provider: PaymentProvider,
        notifier: UserNotifier,
    ) -> None:
        self._events = event_repo
        self._participations = participation_repo
        self._intents = intent_repo
        self._provider = provider
        self._notifier = notifier

    def begin_payment(self, event_id: str, user_id: str | None = None) -> PaymentIntentHandle:
        """Create a provider intent sized to the event's price.

        Raises:
            ValidationError: Malformed id, or the event is free.
            NotFoundError: If the event does not exist.
            AlreadyRegisteredError: If the user has already paid for it.
            TransportFailureError: If the provider call fails.
        """
        ensure_id(event_id, "event ID")
        event = self._events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        if event.is_free:
            raise ValidationError("This event is free")

        if user_id is not None:
            existing = self._participations.get_for(user_id, event_id)
            if existing is not None and existing.payment_status == PaymentStatus.PAID:
                raise AlreadyRegisteredError()

        amount = to_minor_units(event.price)
        currency = event.currency.lower()
        metadata = {"event_id": event.id, "event_title": event.title}
        if user_id is not None:
            metadata["user_id"] = user_id

        try:
            intent = self._provider.create_payment_intent(amount, currency, metadata)
        except TransportFailureError:
            raise
        except Exception as e:
            logger.exception(f"Payment intent creation failed for event {event_id}")
            raise TransportFailureError("Could not create the payment") from e

        self._intents.add(
            PaymentIntentRecord(
                id=intent.id,
                event_id=event.id,
                user_id=user_id,
                amount=amount,
                currency=currency,
            )
        )
        logger.info(f"Created payment intent {intent.id} for event {event.id} ({amount} {currency})")
        return PaymentIntentHandle(intent_id=intent.id, client_secret=intent.client_secret)

    def confirm_payment(self, intent_id: str) -> PaymentIntentStatus:
        """Ask the provider to confirm *intent_id* and apply the outcome."""
        if self._intents.get(intent_id) is None:
            raise NotFoundError("Payment intent not found")

        try:
            status = self._provider.confirm(intent_id)
        except Exception:
            logger.exception(f"Confirmation of payment intent {intent_id} failed")
            status = PaymentIntentStatus.FAILED

        if status == PaymentIntentStatus.SUCCEEDED:
            self.on_provider_confirmed(intent_id)
        elif status == PaymentIntentStatus.FAILED:
            self.on_provider_failed(intent_id)
        return status

    def on_provider_confirmed(self, intent_id: str) -> Participation | None:
        """Finalize the PENDING participation behind *intent_id*.

        Returns the participation now PAID, or None when nothing could be
        associated (logged, not an error).
        """
        record = self._intents.set_status(intent_id, PaymentIntentStatus.SUCCEEDED)
        if record is None or record.user_id is None:
            logger.warning(f"Payment intent {intent_id} has no known participant; ignoring")
            return None

        participation = self._participations.get_for(record.user_id, record.event_id)
        if participation is None:
            logger.warning(
                f"No participation for user {record.user_id} / event {record.event_id} "
                f"behind payment intent {intent_id}"
            )
            return None

        paid = self._participations.mark_paid(participation.id, intent_id)
        if paid is None:
            logger.info(f"Participation {participation.id} was not pending; intent {intent_id} ignored")
            return None

        event = self._events.get(record.event_id)
        title = event.title if event else "your event"
        logger.info(f"Payment succeeded for intent {intent_id}; participation {paid.id} is PAID")
        self._notifier.notify(
            record.user_id,
            "Payment confirmed",
            f'Your payment for "{title}" has been confirmed. You are now registered!',
            NotificationType.SUCCESS,
        )
        return paid

    def on_provider_failed(self, intent_id: str) -> None:
        """Record a failed payment; the participation stays PENDING."""
        record = self._intents.set_status(intent_id, PaymentIntentStatus.FAILED)
        logger.warning(f"Payment failed for intent {intent_id}")
        if record is None or record.user_id is None:
            return

        event = self._events.get(record.event_id)
        title = event.title if event else "your event"
        self._notifier.notify(
            record.user_id,
            "Payment failed",
            f'The payment for "{title}" failed. Please try again.',
            NotificationType.ERROR,
        )

    def handle_webhook(self, payload: bytes, signature: str | None) -> str:
        """Route a provider callback; returns the event type that was handled."""
        event = self._provider.parse_webhook(payload, signature)
        if event.type == SUCCEEDED_WEBHOOK and event.intent_id:
            self.on_provider_confirmed(event.intent_id)
        elif event.type == FAILED_WEBHOOK and event.intent_id:
            self.on_provider_failed(event.intent_id)
        else:
            logger.info(f"Unhandled webhook event type: {event.type}")
        return event.type
