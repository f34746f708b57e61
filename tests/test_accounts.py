"""Connected accounts: onboarding, capability events, payments toggle."""
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from chatfood.services import accounts
from chatfood.services.processor import AccountSnapshot
from chatfood.services.reconcile import Outcome, Reconciler
from chatfood.services.webhooks import EventKind, WebhookEvent
from conftest import bearer, checkout_body, make_restaurant, post_event, stripe_event


def _account_event(obj: dict, kind: EventKind = EventKind.ACCOUNT_UPDATED, account: str | None = None) -> WebhookEvent:
    return WebhookEvent(
        id="evt_acct",
        type="account.updated" if kind is EventKind.ACCOUNT_UPDATED else "account.application.deauthorized",
        kind=kind,
        created=datetime.now(timezone.utc),
        object=obj,
        account=account,
    )


def _reload(db, merchant_id: int):
    db.expire_all()
    return accounts.get_account(db, merchant_id)


def test_derive_onboarding_status():
    assert accounts.derive_onboarding_status(True, True, True) == "complete"
    assert accounts.derive_onboarding_status(True, False, True) == "pending_verification"
    assert accounts.derive_onboarding_status(False, False, True) == "pending_verification"
    assert accounts.derive_onboarding_status(False, False, False) == "pending"


def test_account_updated_complete(db, processor):
    restaurant = make_restaurant(db, "new-place", payments_ready=False)
    account = accounts.get_account(db, restaurant.id)
    account.stripe_account_id = "acct_new"
    account.onboarding_status = "pending"
    db.add(account)
    db.commit()

    obj = {"id": "acct_new", "charges_enabled": True, "payouts_enabled": True, "details_submitted": True}
    result = Reconciler(db, processor).apply(_account_event(obj))
    assert result.outcome is Outcome.APPLIED
    account = _reload(db, restaurant.id)
    assert account.onboarding_status == "complete"
    assert account.charges_enabled and account.payouts_enabled
    assert account.onboarded_at is not None
    # Capability alone does not turn the merchant's switch on
    assert account.payments_enabled is False

    onboarded_at = account.onboarded_at
    assert Reconciler(db, processor).apply(_account_event(obj)).outcome is Outcome.NOOP
    assert _reload(db, restaurant.id).onboarded_at == onboarded_at


def test_losing_charges_clears_payments_enabled(db, processor, restaurant, client: TestClient):
    obj = {"id": "acct_roma", "charges_enabled": False, "payouts_enabled": True, "details_submitted": True}
    assert Reconciler(db, processor).apply(_account_event(obj)).outcome is Outcome.APPLIED
    account = _reload(db, restaurant.id)
    assert account.onboarding_status == "pending_verification"
    assert account.payments_enabled is False
    assert account.onboarded_at is None
    assert client.post("/checkout", json=checkout_body()).status_code == 400


def test_account_updated_for_unknown_account(db, processor):
    obj = {"id": "acct_unknown", "charges_enabled": True, "payouts_enabled": True}
    assert Reconciler(db, processor).apply(_account_event(obj)).outcome is Outcome.NOT_FOUND


def test_deauthorization_resets_account(db, processor, restaurant):
    event = _account_event({"id": "ca_platform", "object": "application"}, EventKind.ACCOUNT_DEAUTHORIZED, "acct_roma")
    assert Reconciler(db, processor).apply(event).outcome is Outcome.APPLIED
    account = _reload(db, restaurant.id)
    assert account.stripe_account_id is None
    assert account.onboarding_status == "not_started"
    assert not (account.charges_enabled or account.payouts_enabled or account.payments_enabled)
    assert accounts.is_payment_ready(account) is False
    # Redelivery
    assert Reconciler(db, processor).apply(event).outcome is Outcome.NOOP


def test_deauthorization_via_webhook(client: TestClient, restaurant, db):
    payload = stripe_event("account.application.deauthorized", {"id": "ca_platform"}, account="acct_roma")
    r = post_event(client, payload)
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"
    assert _reload(db, restaurant.id).stripe_account_id is None


def test_apply_capabilities_only_writes_changes(db, restaurant):
    snapshot = AccountSnapshot("acct_roma", True, True, True)
    assert accounts.apply_capabilities(db, snapshot) is False
    assert accounts.apply_capabilities(db, AccountSnapshot("acct_roma", True, False, True)) is True


def test_onboarding_creates_account_once(client: TestClient, processor, db):
    restaurant = make_restaurant(db, "fresh", payments_ready=False)
    headers = bearer(restaurant)
    r = client.post("/payments/connect/onboard", json={"base_url": "https://dash.example.com/"}, headers=headers)
    assert r.status_code == 200, r.text
    account_id = r.json()["account_id"]
    assert r.json()["onboarding_url"].endswith(account_id)
    assert processor.called("create_onboarding_link")[0]["return_url"] == (
        "https://dash.example.com/dashboard/payments?success=true"
    )

    r = client.post("/payments/connect/onboard", json={}, headers=headers)
    assert r.json()["account_id"] == account_id
    assert len(processor.called("create_connected_account")) == 1
    assert _reload(db, restaurant.id).onboarding_status == "pending"


def test_status_refreshes_from_processor(client: TestClient, processor, restaurant, auth_headers, db):
    processor.accounts["acct_roma"] = AccountSnapshot("acct_roma", True, False, True)
    r = client.get("/payments/connect/status", headers=auth_headers)
    assert r.status_code == 200
    j = r.json()
    assert j["connected"] is True
    assert j["onboarding_status"] == "pending_verification"
    assert j["payouts_enabled"] is False
    assert j["platform_fee_percent"] == 5.0


def test_enable_payments_refused_without_charges(client: TestClient, db):
    restaurant = make_restaurant(db, "not-ready", payments_ready=False)
    headers = bearer(restaurant)
    r = client.put("/payments/settings", json={"payments_enabled": True}, headers=headers)
    assert r.status_code == 400
    assert _reload(db, restaurant.id).payments_enabled is False


def test_toggle_payments(client: TestClient, restaurant, auth_headers, db):
    r = client.put("/payments/settings", json={"payments_enabled": False}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["payments_enabled"] is False
    r = client.put("/payments/settings", json={"payments_enabled": True}, headers=auth_headers)
    assert r.json()["payments_enabled"] is True


def test_dashboard_link(client: TestClient, restaurant, auth_headers, db):
    r = client.post("/payments/connect/dashboard-link", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["dashboard_url"].endswith("acct_roma")

    other = make_restaurant(db, "unlinked", payments_ready=False)
    headers = bearer(other)
    assert client.post("/payments/connect/dashboard-link", headers=headers).status_code == 400


def test_connect_endpoints_require_auth(client: TestClient):
    assert client.get("/payments/connect/status").status_code == 401
    assert client.put("/payments/settings", json={"payments_enabled": True}).status_code == 401
