"""Checkout intent builder: split payment intent + pending order.

Order of operations:
  a) resolve the restaurant and its connected account, refuse unless eligible
  b) total and platform fee
  c) destination charge intent with the platform fee as application fee
  d) order row in pending_payment, referencing the intent
  e) order id written back onto the intent metadata (best-effort)

If d) fails the intent is cancelled before the error is returned, so no
chargeable intent exists without an order.
"""
import logging
import uuid

from sqlmodel import Session, select

from chatfood.core.config import settings
from chatfood.core.errors import MerchantNotFound, OrderCreationFailed, PaymentsNotEnabled, ProcessorError
from chatfood.models import MerchantAccount, Restaurant
from chatfood.schemas.checkout import CheckoutRequest, CheckoutResponse
from chatfood.services import ledger
from chatfood.services.accounts import get_account, is_payment_ready
from chatfood.services.fees import calculate_fees
from chatfood.services.processor import PaymentProcessor

log = logging.getLogger("chatfood.checkout")


class CheckoutIntentBuilder:
    def __init__(self, db: Session, processor: PaymentProcessor):
        self.db = db
        self.processor = processor

    def _resolve_merchant(self, slug: str) -> tuple[Restaurant, MerchantAccount]:
        restaurant = self.db.exec(select(Restaurant).where(Restaurant.slug == slug.strip().lower())).first()
        if not restaurant:
            raise MerchantNotFound("Restaurant not found.")
        account = get_account(self.db, restaurant.id)
        if not is_payment_ready(account):
            raise PaymentsNotEnabled("Online payments are not enabled for this restaurant.")
        return restaurant, account

    def _void_intent(self, intent_id: str) -> None:
        try:
            self.processor.cancel_intent(intent_id)
            log.info("Payment intent %s cancelled after order creation failure", intent_id)
        except ProcessorError as e:
            # Left for manual follow-up: the intent has no order and must not be paid
            log.critical("Could not cancel orphaned payment intent %s: %s", intent_id, e)

    def create(self, request: CheckoutRequest) -> CheckoutResponse:
        restaurant, account = self._resolve_merchant(request.restaurant_slug)
        fees = calculate_fees(request.order_items, account.platform_fee_percent)
        currency = (restaurant.currency or settings.default_currency).lower()

        intent = self.processor.create_split_intent(
            amount=fees.total,
            currency=currency,
            destination=account.stripe_account_id,
            application_fee=fees.platform_fee,
            metadata={
                "restaurant_slug": restaurant.slug,
                "restaurant_id": str(restaurant.id),
                "customer_name": request.customer_name or "",
                "customer_phone": request.customer_phone,
            },
            idempotency_key=f"checkout-{uuid.uuid4().hex}",
        )

        try:
            order = ledger.create_order(
                self.db,
                order_id=uuid.uuid4().hex,
                merchant_id=restaurant.id,
                request=request,
                fees=fees,
                payment_intent_id=intent.id,
                currency=currency,
            )
        except Exception as e:
            self.db.rollback()
            log.error("Order creation failed for intent %s: %s", intent.id, e)
            self._void_intent(intent.id)
            raise OrderCreationFailed("Failed to create order.") from e

        try:
            self.processor.attach_metadata(intent.id, {"order_id": order.id})
        except ProcessorError as e:
            # Reconciliation falls back to the intent reference
            log.warning("Could not attach order %s to intent %s: %s", order.id, intent.id, e)

        log.info(
            "Checkout created: order=%s intent=%s restaurant=%s total=%s fee=%s",
            order.id,
            intent.id,
            restaurant.slug,
            fees.total,
            fees.platform_fee,
        )
        return CheckoutResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            order_id=order.id,
            amount=fees.total,
            currency=currency,
        )
