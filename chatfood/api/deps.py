from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from chatfood.core.config import is_stripe_configured, settings
from chatfood.core.database import get_db
from chatfood.core.security import decode_access_token, secret_matches
from chatfood.models import Restaurant
from chatfood.services.processor import PaymentProcessor, StripeProcessor
from chatfood.services.webhooks import WebhookVerifier

security = HTTPBearer(auto_error=False)


def get_current_merchant_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return int(payload["sub"])


def get_current_merchant(
    merchant_id: int = Depends(get_current_merchant_id),
    db: Session = Depends(get_db),
) -> Restaurant:
    restaurant = db.get(Restaurant, merchant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found.")
    return restaurant


@lru_cache(maxsize=1)
def _stripe_processor() -> StripeProcessor:
    return StripeProcessor(settings.stripe_secret_key, settings.stripe_timeout_seconds)


def get_processor() -> PaymentProcessor:
    """Stripe client for the request; tests override this dependency."""
    if not is_stripe_configured():
        raise HTTPException(status_code=503, detail="Online payments are not configured.")
    return _stripe_processor()


def get_optional_processor() -> PaymentProcessor | None:
    """Webhook variant: events are still reconciled when Stripe is not configured."""
    if not is_stripe_configured():
        return None
    return _stripe_processor()


def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(settings.stripe_webhook_secret, settings.stripe_webhook_tolerance_seconds)


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    if not (settings.admin_secret or "").strip():
        raise HTTPException(status_code=503, detail="Admin access is not configured (ADMIN_SECRET).")
    if not secret_matches(x_admin_secret, settings.admin_secret):
        raise HTTPException(status_code=403, detail="Forbidden.")
