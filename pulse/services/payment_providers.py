"""Payment provider collaborators: Stripe, a disabled stand-in and an in-memory fake."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import uuid
from typing import Protocol

import stripe
from pydantic import BaseModel

from pulse.core.config import Settings
from pulse.domain.errors import TransportFailureError, ValidationError
from pulse.domain.models import PaymentIntentStatus

logger = logging.getLogger(__name__)


class ProviderIntent(BaseModel):
    id: str
    client_secret: str
    status: PaymentIntentStatus = PaymentIntentStatus.REQUIRES_CONFIRMATION


class ProviderWebhookEvent(BaseModel):
    type: str
    intent_id: str | None = None


class PaymentProvider(Protocol):
    def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ProviderIntent: ...

    def confirm(self, intent_id: str) -> PaymentIntentStatus: ...

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderWebhookEvent: ...


def _webhook_event(payload: bytes) -> ProviderWebhookEvent:
    try:
        raw = json.loads(payload)
        obj = (raw.get("data") or {}).get("object") or {}
        return ProviderWebhookEvent(type=raw.get("type", ""), intent_id=obj.get("id"))
    except (ValueError, AttributeError) as e:
        raise ValidationError(f"Webhook error: {e}") from None


class DisabledPaymentProvider:
    """Used when no provider is configured: every payment call is refused."""

    def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ProviderIntent:
        raise TransportFailureError("Payments are not configured")

    def confirm(self, intent_id: str) -> PaymentIntentStatus:
        raise TransportFailureError("Payments are not configured")

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderWebhookEvent:
        raise ValidationError("Payments are not configured")


class InMemoryPaymentProvider:
    """Local stand-in for a card processor, for development and tests.

    Every intent confirms successfully unless it was flagged with
    :meth:`decline`, so no money is ever taken. Webhooks must carry an
    HMAC-SHA256 of the payload under ``webhook_secret`` (see :meth:`sign`);
    the secret is random unless one is passed in.
    """

    def __init__(self, webhook_secret: str | None = None) -> None:
        self.intents: dict[str, ProviderIntent] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.webhook_secret = webhook_secret or secrets.token_hex(16)
        self._declined: set[str] = set()

    def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ProviderIntent:
        intent_id = f"pi_{uuid.uuid4().hex[:24]}"
        intent = ProviderIntent(id=intent_id, client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:16]}")
        self.intents[intent_id] = intent
        self.metadata[intent_id] = dict(metadata)
        return intent

    def decline(self, intent_id: str) -> None:
        self._declined.add(intent_id)

    def confirm(self, intent_id: str) -> PaymentIntentStatus:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise TransportFailureError(f"Unknown payment intent {intent_id}")
        intent.status = (
            PaymentIntentStatus.FAILED
            if intent_id in self._declined
            else PaymentIntentStatus.SUCCEEDED
        )
        return intent.status

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderWebhookEvent:
        if not signature:
            raise ValidationError("No signature found")
        if not hmac.compare_digest(signature, self.sign(payload)):
            raise ValidationError("Webhook error: invalid signature")
        return _webhook_event(payload)


class StripePaymentProvider:
    def __init__(
        self,
        api_key: str,
        webhook_secret: str | None = None,
        allow_unsigned_webhooks: bool = False,
    ) -> None:
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._allow_unsigned = allow_unsigned_webhooks

    def create_payment_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ProviderIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise TransportFailureError(f"Payment provider error: {e.user_message or e}") from e
        return ProviderIntent(id=intent.id, client_secret=intent.client_secret)

    def confirm(self, intent_id: str) -> PaymentIntentStatus:
        try:
            intent = stripe.PaymentIntent.confirm(intent_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise TransportFailureError(f"Payment provider error: {e.user_message or e}") from e
        if intent.status == "succeeded":
            return PaymentIntentStatus.SUCCEEDED
        if intent.status in ("requires_confirmation", "processing", "requires_action"):
            return PaymentIntentStatus.REQUIRES_CONFIRMATION
        return PaymentIntentStatus.FAILED

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderWebhookEvent:
        if not self._webhook_secret:
            if not self._allow_unsigned:
                logger.error("STRIPE_WEBHOOK_SECRET not set; rejecting webhook")
                raise ValidationError("Webhook verification is not configured")
            logger.warning("PAYMENT_WEBHOOK_ALLOW_UNSIGNED is on; skipping webhook verification")
            return _webhook_event(payload)
        if not signature:
            raise ValidationError("No signature found")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError(f"Webhook error: {e}") from None
        return ProviderWebhookEvent(type=event["type"], intent_id=event["data"]["object"]["id"])


def build_payment_provider(settings: Settings) -> PaymentProvider:
    if settings.PAYMENT_PROVIDER == "stripe":
        if not settings.STRIPE_SECRET_KEY:
            raise RuntimeError("PAYMENT_PROVIDER=stripe requires STRIPE_SECRET_KEY")
        if not settings.STRIPE_WEBHOOK_SECRET and not settings.PAYMENT_WEBHOOK_ALLOW_UNSIGNED:
            logger.warning("STRIPE_WEBHOOK_SECRET not set; payment webhooks will be rejected")
        return StripePaymentProvider(
            settings.STRIPE_SECRET_KEY,
            settings.STRIPE_WEBHOOK_SECRET,
            allow_unsigned_webhooks=settings.PAYMENT_WEBHOOK_ALLOW_UNSIGNED,
        )
    if settings.PAYMENT_PROVIDER == "memory":
        logger.warning("Using the in-memory payment provider; payments are not charged")
        return InMemoryPaymentProvider()
    return DisabledPaymentProvider()
