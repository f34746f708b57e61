"""Reconciliation: idempotent, order independent, first terminal status wins."""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from chatfood.models import Order, PaymentEventLog
from chatfood.schemas.checkout import CheckoutRequest
from chatfood.services import ledger
from chatfood.services.fees import calculate_fees
from chatfood.services.reconcile import Outcome, Reconciler
from chatfood.services.webhooks import STRIPE_EVENT_KINDS, WebhookEvent
from conftest import checkout_body, intent_object, post_event, stripe_event


def _pending_order(db: Session, restaurant, intent_id: str = "pi_test1", order_id: str = "order1") -> Order:
    request = CheckoutRequest(**checkout_body())
    return ledger.create_order(
        db,
        order_id=order_id,
        merchant_id=restaurant.id,
        request=request,
        fees=calculate_fees(request.order_items),
        payment_intent_id=intent_id,
        currency="eur",
    )


def _event(event_type: str, obj: dict, event_id: str = "evt_1") -> WebhookEvent:
    return WebhookEvent(
        id=event_id,
        type=event_type,
        kind=STRIPE_EVENT_KINDS[event_type],
        created=datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc),
        object=obj,
    )


def _reload(db: Session, order_id: str) -> Order:
    db.expire_all()
    return db.get(Order, order_id)


@pytest.fixture
def order(db, restaurant) -> Order:
    return _pending_order(db, restaurant)


def test_succeeded_marks_paid(db, processor, order):
    paid = []
    reconciler = Reconciler(db, processor, on_paid=lambda o: paid.append(o.id))
    result = reconciler.apply(_event("payment_intent.succeeded", intent_object("pi_test1", "order1")))
    assert result.outcome is Outcome.APPLIED
    o = _reload(db, "order1")
    assert o.payment_status == "paid"
    assert o.status == "pending"
    assert o.payment_method == "card"
    assert o.paid_at == datetime(2026, 3, 1, 12, 30)
    assert paid == ["order1"]


def test_redelivery_is_noop_and_notifies_once(db, processor, order):
    paid = []
    reconciler = Reconciler(db, processor, on_paid=lambda o: paid.append(o.id))
    event = _event("payment_intent.succeeded", intent_object("pi_test1", "order1"))
    assert reconciler.apply(event).outcome is Outcome.APPLIED
    first = _reload(db, "order1").paid_at
    assert reconciler.apply(event).outcome is Outcome.NOOP
    assert reconciler.apply(event).outcome is Outcome.NOOP
    assert _reload(db, "order1").paid_at == first
    assert paid == ["order1"]
    outcomes = [e.outcome for e in db.exec(select(PaymentEventLog).order_by(PaymentEventLog.id)).all()]
    assert outcomes == ["applied", "noop", "noop"]


def test_failed_after_paid_is_anomaly(db, processor, order):
    reconciler = Reconciler(db, processor)
    reconciler.apply(_event("payment_intent.succeeded", intent_object("pi_test1", "order1")))
    result = reconciler.apply(_event("payment_intent.payment_failed", intent_object("pi_test1", "order1"), "evt_2"))
    assert result.outcome is Outcome.ANOMALY
    o = _reload(db, "order1")
    assert o.payment_status == "paid"
    assert o.status == "pending"


def test_succeeded_after_failed_is_anomaly(db, processor, order):
    paid = []
    reconciler = Reconciler(db, processor, on_paid=lambda o: paid.append(o.id))
    reconciler.apply(_event("payment_intent.payment_failed", intent_object("pi_test1", "order1")))
    result = reconciler.apply(_event("payment_intent.succeeded", intent_object("pi_test1", "order1"), "evt_2"))
    assert result.outcome is Outcome.ANOMALY
    o = _reload(db, "order1")
    assert o.payment_status == "failed"
    assert o.status == "cancelled"
    assert o.paid_at is None
    assert paid == []


def test_cancelled_marks_order_cancelled(db, processor, order):
    result = Reconciler(db, processor).apply(_event("payment_intent.canceled", intent_object("pi_test1", "order1")))
    assert result.outcome is Outcome.APPLIED
    o = _reload(db, "order1")
    assert o.payment_status == "cancelled"
    assert o.status == "cancelled"


def test_unknown_intent_is_not_found(db, processor, order):
    result = Reconciler(db, processor).apply(_event("payment_intent.succeeded", intent_object("pi_other", "nope")))
    assert result.outcome is Outcome.NOT_FOUND
    assert result.reference == "pi_other"
    assert _reload(db, "order1").payment_status == "pending"
    (entry,) = db.exec(select(PaymentEventLog)).all()
    assert entry.outcome == "not_found"


def test_falls_back_to_intent_reference_without_metadata(db, processor, order):
    result = Reconciler(db, processor).apply(_event("payment_intent.succeeded", intent_object("pi_test1")))
    assert result.outcome is Outcome.APPLIED
    assert _reload(db, "order1").payment_status == "paid"


def test_metadata_pointing_at_another_order_is_not_trusted(db, processor, restaurant, order):
    _pending_order(db, restaurant, intent_id="pi_test2", order_id="order2")
    Reconciler(db, processor).apply(_event("payment_intent.succeeded", intent_object("pi_test2", "order1")))
    assert _reload(db, "order1").payment_status == "pending"
    assert _reload(db, "order2").payment_status == "paid"


def test_processor_fee_from_expanded_event(db, processor, order):
    intent = intent_object("pi_test1", "order1", latest_charge={"balance_transaction": {"fee": 73}})
    Reconciler(db, processor).apply(_event("payment_intent.succeeded", intent))
    assert _reload(db, "order1").processor_fee == 73
    assert processor.called("get_settlement_fee") == []


def test_processor_fee_fetched_when_not_in_event(db, processor, order):
    processor.settlement_fee = 61
    Reconciler(db, processor).apply(_event("payment_intent.succeeded", intent_object("pi_test1", "order1")))
    assert _reload(db, "order1").processor_fee == 61


def test_payment_applied_without_processor_leaves_fee_unset(db, order):
    result = Reconciler(db, None).apply(_event("payment_intent.succeeded", intent_object("pi_test1", "order1")))
    assert result.outcome is Outcome.APPLIED
    o = _reload(db, "order1")
    assert o.payment_status == "paid"
    assert o.processor_fee is None


def test_fee_not_fetched_for_noop(db, processor, order):
    reconciler = Reconciler(db, processor)
    event = _event("payment_intent.succeeded", intent_object("pi_test1", "order1"))
    reconciler.apply(event)
    reconciler.apply(event)
    assert len(processor.called("get_settlement_fee")) == 1


def test_lost_race_is_classified_after_reload(db, processor, order, monkeypatch):
    # Another delivery settles the order between the read and the conditional update
    real_transition = ledger.transition_payment

    def concurrent_transition(session, order_id, payment_status, **values):
        real_transition(session, order_id, payment_status, **values)
        return False

    monkeypatch.setattr(ledger, "transition_payment", concurrent_transition)
    paid = []
    result = Reconciler(db, processor, on_paid=lambda o: paid.append(o.id)).apply(
        _event("payment_intent.succeeded", intent_object("pi_test1", "order1"))
    )
    assert result.outcome is Outcome.NOOP
    assert paid == []


def test_webhook_endpoint_settles_checkout_order(client: TestClient, restaurant, db, monkeypatch):
    notified = []
    monkeypatch.setattr("chatfood.api.payments.notify_order_paid", lambda order_id: notified.append(order_id))
    r = client.post("/checkout", json=checkout_body())
    intent_id, order_id = r.json()["payment_intent_id"], r.json()["order_id"]
    payload = stripe_event("payment_intent.succeeded", intent_object(intent_id, order_id))

    r = post_event(client, payload)
    assert r.status_code == 200
    assert r.json() == {"received": True, "kind": "payment_succeeded", "outcome": "applied"}
    r = post_event(client, payload)
    assert r.json()["outcome"] == "noop"

    assert _reload(db, order_id).payment_status == "paid"
    assert notified == [order_id]


def test_webhook_for_missing_order_is_acknowledged(client: TestClient):
    r = post_event(client, stripe_event("payment_intent.payment_failed", intent_object("pi_gone", "gone")))
    assert r.status_code == 200
    assert r.json()["outcome"] == "not_found"
