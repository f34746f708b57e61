"""Public ordering page: checkout and payment availability."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from chatfood.api.deps import get_processor
from chatfood.core.config import settings
from chatfood.core.database import get_db
from chatfood.core.rate_limit import limiter
from chatfood.models import Restaurant
from chatfood.schemas import CheckoutRequest, CheckoutResponse, PaymentAvailability
from chatfood.services.accounts import get_account, is_payment_ready
from chatfood.services.checkout import CheckoutIntentBuilder
from chatfood.services.processor import PaymentProcessor

router = APIRouter(tags=["checkout"])

_CHECKOUT_LIMIT = f"{settings.rate_limit_checkout_per_minute}/minute"


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(_CHECKOUT_LIMIT)
def create_checkout(
    request: Request,
    body: CheckoutRequest,
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
):
    """Creates the Stripe payment intent and a pending_payment order; the client confirms with client_secret."""
    return CheckoutIntentBuilder(db, processor).create(body)


@router.get("/public/{slug}/payments", response_model=PaymentAvailability)
def payment_availability(slug: str, db: Session = Depends(get_db)):
    restaurant = db.exec(select(Restaurant).where(Restaurant.slug == slug.strip().lower())).first()
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found.")
    return PaymentAvailability(
        restaurant_slug=restaurant.slug,
        online_payments=is_payment_ready(get_account(db, restaurant.id)),
        currency=restaurant.currency,
    )
