"""Reconciliation of Stripe events against orders and merchant accounts.

Stripe delivers at least once, possibly out of order, possibly concurrently.
Each handler is safe to run again for the same event:

- payment transitions only leave `pending` (conditional UPDATE), so the first
  terminal status wins and later conflicting events are recorded as anomalies;
- account updates only write when the row differs from the payload;
- a missing order or account is logged and acknowledged, never raised.

Every delivery ends with a PaymentEventLog row and one of the Outcome values.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from sqlmodel import Session

from chatfood.core.errors import ProcessorError
from chatfood.models import Order, PaymentEventLog
from chatfood.models.order import (
    PAYMENT_CANCELLED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    STATUS_CANCELLED,
    STATUS_PENDING,
    TERMINAL_PAYMENT_STATUSES,
)
from chatfood.services import accounts, ledger
from chatfood.services.processor import AccountSnapshot, PaymentProcessor
from chatfood.services.webhooks import EventKind, WebhookEvent

log = logging.getLogger("chatfood.reconcile")


class Outcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    # ReconciliationAnomaly: conflicting terminal state; logged, acknowledged
    ANOMALY = "anomaly"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass
class ReconcileResult:
    kind: EventKind
    outcome: Outcome
    reference: str | None = None
    detail: str | None = None


def _settlement_fee_from_event(intent: dict) -> int | None:
    """Stripe fee when the event carries an expanded charge balance transaction."""
    charge = intent.get("latest_charge")
    if not isinstance(charge, dict):
        return None
    balance = charge.get("balance_transaction")
    if not isinstance(balance, dict):
        return None
    fee = balance.get("fee")
    return int(fee) if isinstance(fee, int) else None


class Reconciler:
    def __init__(
        self,
        db: Session,
        processor: PaymentProcessor | None,
        on_paid: Callable[[Order], None] | None = None,
    ):
        self.db = db
        self.processor = processor
        self.on_paid = on_paid
        self._handlers: dict[EventKind, Callable[[WebhookEvent], ReconcileResult]] = {
            EventKind.PAYMENT_SUCCEEDED: self.handle_payment_succeeded,
            EventKind.PAYMENT_FAILED: self.handle_payment_failed,
            EventKind.PAYMENT_CANCELLED: self.handle_payment_cancelled,
            EventKind.ACCOUNT_UPDATED: self.handle_account_updated,
            EventKind.ACCOUNT_DEAUTHORIZED: self.handle_account_deauthorized,
            EventKind.UNKNOWN: self.handle_unknown,
        }

    def apply(self, event: WebhookEvent) -> ReconcileResult:
        result = self._handlers[event.kind](event)
        self._record(event, result)
        return result

    def _record(self, event: WebhookEvent, result: ReconcileResult) -> None:
        level = logging.WARNING if result.outcome in (Outcome.ANOMALY, Outcome.NOT_FOUND) else logging.INFO
        log.log(
            level,
            "Stripe event %s (%s) ref=%s outcome=%s %s",
            event.id,
            event.type,
            result.reference,
            result.outcome.value,
            result.detail or "",
        )
        self.db.add(
            PaymentEventLog(
                event_id=event.id,
                event_type=event.type or "<empty>",
                kind=event.kind.value,
                reference=result.reference,
                outcome=result.outcome.value,
                detail=(result.detail or "")[:500] or None,
            )
        )
        self.db.commit()

    # ---------- payment intent events ----------
    def _locate(self, event: WebhookEvent) -> tuple[str | None, Order | None]:
        intent = event.object
        intent_id = intent.get("id")
        if not isinstance(intent_id, str) or not intent_id:
            return None, None
        metadata = intent.get("metadata")
        order_id = metadata.get("order_id") if isinstance(metadata, dict) else None
        if not isinstance(order_id, str):
            order_id = None
        return intent_id, ledger.locate_order(self.db, intent_id, order_id)

    def _settle(
        self,
        event: WebhookEvent,
        target: str,
        values: Callable[[], dict],
    ) -> tuple[ReconcileResult, Order | None]:
        intent_id, order = self._locate(event)
        if order is None:
            # Order may have been removed by account deletion after payment
            return ReconcileResult(event.kind, Outcome.NOT_FOUND, intent_id, "no order for payment intent"), None
        if order.payment_status != target and order.payment_status in TERMINAL_PAYMENT_STATUSES:
            detail = f"order {order.id} already {order.payment_status}, {target} not applied"
            return ReconcileResult(event.kind, Outcome.ANOMALY, intent_id, detail), order
        if order.payment_status == target:
            return ReconcileResult(event.kind, Outcome.NOOP, intent_id, f"order {order.id} already {target}"), order
        if ledger.transition_payment(self.db, order.id, target, **values()):
            return ReconcileResult(event.kind, Outcome.APPLIED, intent_id, f"order {order.id} -> {target}"), order
        # Lost the race to a concurrent delivery; re-read to classify
        self.db.refresh(order)
        if order.payment_status == target:
            return ReconcileResult(event.kind, Outcome.NOOP, intent_id, f"order {order.id} already {target}"), order
        detail = f"order {order.id} already {order.payment_status}, {target} not applied"
        return ReconcileResult(event.kind, Outcome.ANOMALY, intent_id, detail), order

    def _processor_fee(self, intent: dict) -> int | None:
        fee = _settlement_fee_from_event(intent)
        if fee is not None or self.processor is None:
            # Without a Stripe client the fee is left unset
            return fee
        try:
            return self.processor.get_settlement_fee(intent["id"])
        except ProcessorError as e:
            log.warning("Settlement fee unavailable for %s: %s", intent["id"], e)
            return None

    def handle_payment_succeeded(self, event: WebhookEvent) -> ReconcileResult:
        intent = event.object
        method_types = intent.get("payment_method_types")
        method = "card"
        if isinstance(method_types, list) and method_types and isinstance(method_types[0], str):
            method = method_types[0]

        def paid_values() -> dict:
            # Only computed when the order is still pending: the fee may need a Stripe call
            return {
                "status": STATUS_PENDING,
                "paid_at": event.created.replace(tzinfo=None),
                "payment_method": method,
                "processor_fee": self._processor_fee(intent),
            }

        result, order = self._settle(event, PAYMENT_PAID, paid_values)
        if result.outcome is Outcome.APPLIED and order is not None and self.on_paid:
            self.on_paid(order)
        return result

    def handle_payment_failed(self, event: WebhookEvent) -> ReconcileResult:
        result, _ = self._settle(event, PAYMENT_FAILED, lambda: {"status": STATUS_CANCELLED})
        return result

    def handle_payment_cancelled(self, event: WebhookEvent) -> ReconcileResult:
        result, _ = self._settle(event, PAYMENT_CANCELLED, lambda: {"status": STATUS_CANCELLED})
        return result

    # ---------- connected account events ----------
    def handle_account_updated(self, event: WebhookEvent) -> ReconcileResult:
        obj = event.object
        account_id = obj.get("id") if isinstance(obj.get("id"), str) else None
        account_id = account_id or event.account
        if not account_id or accounts.find_by_stripe_id(self.db, account_id) is None:
            return ReconcileResult(event.kind, Outcome.NOT_FOUND, account_id, "no merchant for account")
        snapshot = AccountSnapshot(
            id=account_id,
            charges_enabled=bool(obj.get("charges_enabled")),
            payouts_enabled=bool(obj.get("payouts_enabled")),
            details_submitted=bool(obj.get("details_submitted")),
        )
        if accounts.apply_capabilities(self.db, snapshot):
            detail = f"charges={snapshot.charges_enabled} payouts={snapshot.payouts_enabled}"
            return ReconcileResult(event.kind, Outcome.APPLIED, account_id, detail)
        return ReconcileResult(event.kind, Outcome.NOOP, account_id)

    def handle_account_deauthorized(self, event: WebhookEvent) -> ReconcileResult:
        fallback = event.object.get("account")
        account_id = event.account or (fallback if isinstance(fallback, str) else None)
        if not account_id:
            return ReconcileResult(event.kind, Outcome.NOT_FOUND, None, "event has no account")
        if accounts.disconnect_account(self.db, account_id):
            return ReconcileResult(event.kind, Outcome.APPLIED, account_id, "disconnected")
        # Already disconnected (redelivery) or never known
        return ReconcileResult(event.kind, Outcome.NOOP, account_id, "no connected merchant")

    def handle_unknown(self, event: WebhookEvent) -> ReconcileResult:
        return ReconcileResult(event.kind, Outcome.IGNORED, None, event.type or None)
