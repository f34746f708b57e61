"""Stripe Connect for restaurants and the Stripe webhook endpoint."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from chatfood.api.deps import get_current_merchant, get_optional_processor, get_processor, get_webhook_verifier
from chatfood.core.config import settings
from chatfood.core.database import get_db
from chatfood.core.errors import SignatureInvalid
from chatfood.core.rate_limit import get_client_ip, limiter
from chatfood.models import MerchantAccount, Restaurant, SecurityLog
from chatfood.schemas.payments import (
    AccountStatusResponse,
    DashboardLinkResponse,
    OnboardRequest,
    OnboardResponse,
    PaymentSettingsUpdate,
    WebhookAck,
)
from chatfood.services import accounts
from chatfood.services.notify import notify_order_paid
from chatfood.services.processor import PaymentProcessor
from chatfood.services.reconcile import Reconciler
from chatfood.services.webhooks import WebhookVerifier

router = APIRouter(tags=["payments"])
log = logging.getLogger("chatfood.payments")

# Connect endpoints each call Stripe
_CONNECT_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def _status_response(account: MerchantAccount) -> AccountStatusResponse:
    return AccountStatusResponse(
        connected=bool(account.stripe_account_id),
        account_id=account.stripe_account_id,
        onboarding_status=account.onboarding_status,
        charges_enabled=account.charges_enabled,
        payouts_enabled=account.payouts_enabled,
        payments_enabled=account.payments_enabled,
        platform_fee_percent=accounts.effective_fee_percent(account),
        onboarded_at=account.onboarded_at,
    )


@router.post("/payments/connect/onboard", response_model=OnboardResponse)
@limiter.limit(_CONNECT_LIMIT)
def connect_onboard(
    request: Request,
    body: OnboardRequest,
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
):
    """Creates the Express account if needed and returns the Stripe onboarding link."""
    base_url = (body.base_url or settings.frontend_url).rstrip("/")
    account_id, url = accounts.start_onboarding(
        db,
        processor,
        restaurant,
        refresh_url=f"{base_url}/dashboard/payments?refresh=true",
        return_url=f"{base_url}/dashboard/payments?success=true",
    )
    return OnboardResponse(account_id=account_id, onboarding_url=url)


@router.get("/payments/connect/status", response_model=AccountStatusResponse)
def connect_status(
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
):
    account = accounts.get_or_create_account(db, restaurant.id)
    account = accounts.refresh_from_processor(db, processor, account)
    return _status_response(account)


@router.post("/payments/connect/dashboard-link", response_model=DashboardLinkResponse)
@limiter.limit(_CONNECT_LIMIT)
def connect_dashboard_link(
    request: Request,
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
):
    url = accounts.dashboard_link(processor, accounts.get_account(db, restaurant.id))
    return DashboardLinkResponse(dashboard_url=url)


@router.put("/payments/settings", response_model=AccountStatusResponse)
def update_payment_settings(
    body: PaymentSettingsUpdate,
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    account = accounts.set_payments_enabled(db, restaurant.id, body.payments_enabled)
    log.info("Restaurant %s payments_enabled=%s", restaurant.id, account.payments_enabled)
    return _status_response(account)


@router.post("/stripe/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    processor: PaymentProcessor | None = Depends(get_optional_processor),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
):
    """Stripe events. 2xx only after the event is reconciled or deliberately ignored."""
    body = await request.body()
    try:
        event = verifier.verify(body, request.headers.get("stripe-signature"))
    except SignatureInvalid as e:
        log.warning("Webhook signature verification failed: %s", e)
        try:
            db.add(SecurityLog(event="webhook_signature_invalid", ip=get_client_ip(request), endpoint=request.url.path, detail=str(e)))
            db.commit()
        except Exception as log_err:
            log.warning("SecurityLog webhook write failed: %s", log_err)
        raise

    reconciler = Reconciler(
        db,
        processor,
        on_paid=lambda order: background_tasks.add_task(notify_order_paid, order.id),
    )
    result = await run_in_threadpool(reconciler.apply, event)
    return WebhookAck(kind=result.kind.value, outcome=result.outcome.value)
