"""Stripe webhook verification and parsing into a closed set of event kinds."""
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import stripe
from pydantic import BaseModel, Field, ValidationError

from chatfood.core.errors import SignatureInvalid

log = logging.getLogger("chatfood.webhooks")


class EventKind(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELLED = "payment_cancelled"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DEAUTHORIZED = "account_deauthorized"
    UNKNOWN = "unknown"


STRIPE_EVENT_KINDS = {
    "payment_intent.succeeded": EventKind.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": EventKind.PAYMENT_FAILED,
    "payment_intent.canceled": EventKind.PAYMENT_CANCELLED,
    "account.updated": EventKind.ACCOUNT_UPDATED,
    "account.application.deauthorized": EventKind.ACCOUNT_DEAUTHORIZED,
}


class WebhookEvent(BaseModel):
    id: str | None = None
    type: str
    kind: EventKind
    created: datetime
    # data.object of the Stripe event (PaymentIntent, Account, Application)
    object: dict[str, Any] = Field(default_factory=dict)
    # Connected account the event belongs to (Connect events)
    account: str | None = None


def _unknown(event_type: str = "") -> WebhookEvent:
    return WebhookEvent(type=event_type, kind=EventKind.UNKNOWN, created=datetime.now(timezone.utc))


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse(payload: str) -> WebhookEvent:
    """Signed body -> WebhookEvent. Any unexpected shape becomes an UNKNOWN event, never an error."""
    try:
        raw = json.loads(payload)
    except ValueError:
        log.error("Signed webhook body is not JSON; acknowledged as unknown")
        return _unknown()
    if not isinstance(raw, dict):
        log.error("Signed webhook body is not an object; acknowledged as unknown")
        return _unknown()
    event_type = raw.get("type") if isinstance(raw.get("type"), str) else ""
    try:
        data = raw.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        created = raw.get("created")
        return WebhookEvent(
            id=_optional_str(raw.get("id")),
            type=event_type,
            kind=STRIPE_EVENT_KINDS.get(event_type, EventKind.UNKNOWN),
            created=datetime.fromtimestamp(created, timezone.utc) if isinstance(created, int) else datetime.now(timezone.utc),
            object=obj if isinstance(obj, dict) else {},
            account=_optional_str(raw.get("account")),
        )
    except (ValueError, TypeError, OverflowError, OSError, ValidationError) as e:
        log.error("Malformed Stripe event %r acknowledged as unknown: %s", event_type, e)
        return _unknown(event_type)


class WebhookVerifier:
    """Checks the Stripe-Signature header (t=..., v1=...) against the endpoint secret."""

    def __init__(self, secret: str, tolerance_seconds: int = 300):
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds

    def verify(self, body: bytes | str, signature: str | None) -> WebhookEvent:
        if not self.secret:
            raise SignatureInvalid("Webhook secret is not configured.")
        if not signature:
            raise SignatureInvalid("Missing Stripe-Signature header.")
        payload = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.secret, self.tolerance_seconds)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid("Invalid signature.") from e
        event = _parse(payload)
        if event.kind is EventKind.UNKNOWN:
            log.info("Unhandled Stripe event type: %s", event.type or "<empty>")
        return event
