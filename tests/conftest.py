"""Pytest fixtures: test client, in-memory SQLite, fake Stripe processor, signed webhooks."""
import hashlib
import hmac
import json
import os
import time
import uuid

import pytest
from fastapi.testclient import TestClient

# Must be set before chatfood is imported (settings and limits are read at import)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ADMIN_SECRET", "admin-test-secret")
os.environ.setdefault("RATE_LIMIT_CHECKOUT_PER_MINUTE", "1000")

from sqlmodel import Session, SQLModel

from chatfood.api.deps import get_optional_processor, get_processor
from chatfood.core.config import settings
from chatfood.core.database import engine, init_db
from chatfood.core.errors import ProcessorError
from chatfood.core.rate_limit import limiter
from chatfood.core.security import create_access_token, hash_password
from chatfood.main import app
from chatfood.models import MerchantAccount, Restaurant
from chatfood.models.merchant_account import ONBOARDING_COMPLETE
from chatfood.services.processor import AccountSnapshot, CreatedIntent


class FakeProcessor:
    """In-memory stand-in for StripeProcessor; records every call."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.intents: dict[str, dict] = {}
        self.fail_create = False
        self.fail_cancel = False
        self.fail_attach = False
        self.settlement_fee: int | None = None
        self.accounts: dict[str, AccountSnapshot] = {}
        self._account_seq = 0

    def create_split_intent(self, amount, currency, destination, application_fee, metadata, idempotency_key):
        self.calls.append(("create_split_intent", {
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "application_fee": application_fee,
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        }))
        if self.fail_create:
            raise ProcessorError("Payment processor unreachable (create_intent).")
        intent_id = f"pi_{uuid.uuid4().hex[:16]}"
        self.intents[intent_id] = {"status": "requires_payment_method", "metadata": dict(metadata)}
        return CreatedIntent(id=intent_id, client_secret=f"{intent_id}_secret_x", amount=amount, currency=currency)

    def cancel_intent(self, intent_id):
        self.calls.append(("cancel_intent", {"intent_id": intent_id}))
        if self.fail_cancel:
            raise ProcessorError("Payment processor unreachable (cancel_intent).")
        self.intents[intent_id]["status"] = "canceled"

    def attach_metadata(self, intent_id, metadata):
        self.calls.append(("attach_metadata", {"intent_id": intent_id, "metadata": dict(metadata)}))
        if self.fail_attach:
            raise ProcessorError("Payment processor unreachable (update_intent).")
        self.intents[intent_id]["metadata"].update(metadata)

    def get_settlement_fee(self, intent_id):
        self.calls.append(("get_settlement_fee", {"intent_id": intent_id}))
        return self.settlement_fee

    def create_connected_account(self, email, business_name, merchant_id):
        self._account_seq += 1
        account_id = f"acct_test{self._account_seq}"
        self.calls.append(("create_connected_account", {"email": email, "merchant_id": merchant_id}))
        self.accounts[account_id] = AccountSnapshot(account_id, False, False, False)
        return account_id

    def create_onboarding_link(self, account_id, refresh_url, return_url):
        self.calls.append(("create_onboarding_link", {"account_id": account_id, "return_url": return_url}))
        return f"https://connect.stripe.test/setup/{account_id}"

    def retrieve_account(self, account_id):
        self.calls.append(("retrieve_account", {"account_id": account_id}))
        return self.accounts.get(account_id) or AccountSnapshot(account_id, False, False, False)

    def create_dashboard_link(self, account_id):
        self.calls.append(("create_dashboard_link", {"account_id": account_id}))
        return f"https://connect.stripe.test/express/{account_id}"

    def called(self, name: str) -> list[dict]:
        return [params for call, params in self.calls if call == name]


@pytest.fixture(autouse=True)
def _fresh_state():
    """Empty tables and rate limit counters for every test."""
    SQLModel.metadata.drop_all(engine)
    init_db()
    limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def processor() -> FakeProcessor:
    fake = FakeProcessor()
    app.dependency_overrides[get_processor] = lambda: fake
    app.dependency_overrides[get_optional_processor] = lambda: fake
    return fake


@pytest.fixture
def client(processor):
    """TestClient; lifespan creates the tables, Stripe is replaced by FakeProcessor."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


def make_restaurant(
    db: Session,
    slug: str = "pizza-roma",
    *,
    payments_ready: bool = True,
    fee_percent: float | None = None,
    stripe_account_id: str | None = "acct_roma",
) -> Restaurant:
    restaurant = Restaurant(
        email=f"{slug}@example.com",
        hashed_password=hash_password("secret123"),
        restaurant_name=slug.replace("-", " ").title(),
        slug=slug,
        currency="eur",
    )
    db.add(restaurant)
    db.commit()
    db.refresh(restaurant)
    account = MerchantAccount(merchant_id=restaurant.id, platform_fee_percent=fee_percent)
    if payments_ready:
        account.stripe_account_id = stripe_account_id
        account.onboarding_status = ONBOARDING_COMPLETE
        account.charges_enabled = True
        account.payouts_enabled = True
        account.payments_enabled = True
    db.add(account)
    db.commit()
    db.refresh(restaurant)
    return restaurant


@pytest.fixture
def restaurant(db) -> Restaurant:
    """Connected, charge-capable restaurant with online payments on."""
    return make_restaurant(db)


def bearer(restaurant: Restaurant) -> dict:
    token = create_access_token({"sub": str(restaurant.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(restaurant) -> dict:
    return bearer(restaurant)


def checkout_body(slug: str = "pizza-roma", items: list | None = None) -> dict:
    return {
        "restaurant_slug": slug,
        "order_items": items if items is not None else [
            {"product_id": "margherita", "name": "Margherita", "unit_price": 1000, "quantity": 2},
            {"product_id": "tiramisu", "name": "Tiramisu", "unit_price": 500, "quantity": 1},
        ],
        "customer_name": "Ada",
        "customer_phone": "+33600000000",
        "order_type": "pickup",
    }


def sign(payload: str, secret: str | None = None, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for payload."""
    t = timestamp if timestamp is not None else int(time.time())
    key = (secret if secret is not None else settings.stripe_webhook_secret).encode()
    v1 = hmac.new(key, f"{t}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={t},v1={v1}"


def stripe_event(event_type: str, obj: dict, *, event_id: str | None = None, account: str | None = None) -> str:
    event = {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }
    if account:
        event["account"] = account
    return json.dumps(event)


def intent_object(intent_id: str, order_id: str | None = None, **extra) -> dict:
    obj = {
        "id": intent_id,
        "object": "payment_intent",
        "metadata": {"order_id": order_id} if order_id else {},
        "payment_method_types": ["card"],
    }
    obj.update(extra)
    return obj


def post_event(client: TestClient, payload: str, signature: str | None = None):
    headers = {"Content-Type": "application/json", "Stripe-Signature": signature or sign(payload)}
    return client.post("/stripe/webhook", content=payload.encode(), headers=headers)
