"""Payment processor client: Stripe Connect destination charges.

The rest of the code depends on the PaymentProcessor protocol only; routes get
an instance through chatfood.api.deps.get_processor so tests can swap it out.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import stripe

from chatfood.core.config import settings
from chatfood.core.errors import ProcessorError

log = logging.getLogger("chatfood.processor")

RESTAURANT_MCC = "5812"  # Eating places, restaurants


@dataclass(frozen=True)
class CreatedIntent:
    id: str
    client_secret: str
    amount: int
    currency: str


@dataclass(frozen=True)
class AccountSnapshot:
    id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


class PaymentProcessor(Protocol):
    def create_split_intent(
        self,
        amount: int,
        currency: str,
        destination: str,
        application_fee: int,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CreatedIntent: ...

    def cancel_intent(self, intent_id: str) -> None: ...

    def attach_metadata(self, intent_id: str, metadata: dict[str, str]) -> None: ...

    def get_settlement_fee(self, intent_id: str) -> int | None: ...

    def create_connected_account(self, email: str, business_name: str, merchant_id: int) -> str: ...

    def create_onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str: ...

    def retrieve_account(self, account_id: str) -> AccountSnapshot: ...

    def create_dashboard_link(self, account_id: str) -> str: ...


class StripeProcessor:
    """Stripe SDK calls with a bounded timeout and one retry on network failure.

    Each instance owns its StripeClient, so key, timeout and retry policy are
    not shared through the stripe module globals. Declines and invalid
    requests are never retried. Creation calls carry an idempotency key so
    the retry cannot produce a second intent.
    """

    def __init__(self, api_key: str, timeout_seconds: int = 20):
        self.client = stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
            # Retries are handled by _call
            max_network_retries=0,
        )

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        for attempt in (1, 2):
            try:
                return fn(*args, **kwargs)
            except stripe.APIConnectionError as e:
                if attempt == 2:
                    log.error("Stripe %s failed after retry: %s", operation, e)
                    raise ProcessorError(f"Payment processor unreachable ({operation}).") from e
                log.warning("Stripe %s network error, retrying once: %s", operation, e)
            except stripe.CardError as e:
                raise ProcessorError(e.user_message or "Payment declined.", declined=True) from e
            except stripe.StripeError as e:
                log.error("Stripe %s failed: %s", operation, e)
                raise ProcessorError(e.user_message or f"Payment processor error ({operation}).") from e

    def create_split_intent(
        self,
        amount: int,
        currency: str,
        destination: str,
        application_fee: int,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CreatedIntent:
        intent = self._call(
            "create_intent",
            self.client.payment_intents.create,
            params={
                "amount": amount,
                "currency": currency,
                "transfer_data": {"destination": destination},
                "application_fee_amount": application_fee,
                "automatic_payment_methods": {"enabled": True},
                "metadata": metadata,
            },
            options={"idempotency_key": idempotency_key},
        )
        return CreatedIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
        )

    def cancel_intent(self, intent_id: str) -> None:
        self._call("cancel_intent", self.client.payment_intents.cancel, intent_id)

    def attach_metadata(self, intent_id: str, metadata: dict[str, str]) -> None:
        # Stripe merges metadata keys, existing ones are kept
        self._call("update_intent", self.client.payment_intents.update, intent_id, params={"metadata": metadata})

    def get_settlement_fee(self, intent_id: str) -> int | None:
        intent = self._call(
            "retrieve_intent",
            self.client.payment_intents.retrieve,
            intent_id,
            params={"expand": ["latest_charge.balance_transaction"]},
        )
        charge = getattr(intent, "latest_charge", None)
        balance = getattr(charge, "balance_transaction", None) if charge else None
        fee = getattr(balance, "fee", None) if balance else None
        return int(fee) if fee is not None else None

    def create_connected_account(self, email: str, business_name: str, merchant_id: int) -> str:
        account = self._call(
            "create_account",
            self.client.accounts.create,
            params={
                "type": "express",
                "country": settings.stripe_connect_country,
                "email": email,
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                "business_profile": {"name": business_name or "Restaurant", "mcc": RESTAURANT_MCC},
                "metadata": {"merchant_id": str(merchant_id)},
            },
            options={"idempotency_key": f"connect-account-{merchant_id}-{uuid.uuid4().hex}"},
        )
        return account.id

    def create_onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        link = self._call(
            "create_account_link",
            self.client.account_links.create,
            params={
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return link.url

    def retrieve_account(self, account_id: str) -> AccountSnapshot:
        account = self._call("retrieve_account", self.client.accounts.retrieve, account_id)
        return AccountSnapshot(
            id=account.id,
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            details_submitted=bool(getattr(account, "details_submitted", False)),
        )

    def create_dashboard_link(self, account_id: str) -> str:
        link = self._call("create_login_link", self.client.accounts.login_links.create, account_id)
        return link.url
