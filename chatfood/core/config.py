from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: chatfood/core/config.py -> chatfood/core -> chatfood -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

STRIPE_KEY_PREFIXES = ("sk_", "rk_")


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./chatfood.db"
    # CORS: comma separated origin list; "*" in development
    cors_origins: str = "*"
    # Requests per minute per IP
    rate_limit_per_minute: int = 60
    # Public checkout endpoint, separate limit
    rate_limit_checkout_per_minute: int = 20
    # Stripe Connect: destination charges, platform keeps the application fee
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    stripe_timeout_seconds: int = 20
    stripe_connect_country: str = "FR"
    default_platform_fee_percent: float = 5.0
    default_currency: str = "eur"
    # Onboarding return/refresh links point back to the dashboard
    frontend_url: str = "http://127.0.0.1:8000"
    # Outbound webhooks (n8n etc.); empty means disabled
    order_notification_webhook_url: str = ""
    review_request_webhook_url: str = ""
    notification_timeout_seconds: int = 5
    admin_secret: str = ""
    environment: str = "development"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("stripe_secret_key", "stripe_webhook_secret", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Trailing whitespace from copy/paste breaks signatures."""
        return (v or "").strip()

    @field_validator("default_currency", mode="before")
    @classmethod
    def lower_currency(cls, v: str | None) -> str:
        return (v or "eur").strip().lower()


settings = Settings()


def is_stripe_configured() -> bool:
    key = settings.stripe_secret_key
    return bool(key) and key.startswith(STRIPE_KEY_PREFIXES)
