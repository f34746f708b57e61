from datetime import datetime

from pydantic import BaseModel, Field


class OnboardRequest(BaseModel):
    """Dashboard base URL for the Stripe onboarding return/refresh links."""
    base_url: str | None = None


class OnboardResponse(BaseModel):
    success: bool = True
    account_id: str
    onboarding_url: str


class DashboardLinkResponse(BaseModel):
    success: bool = True
    dashboard_url: str


class AccountStatusResponse(BaseModel):
    connected: bool
    account_id: str | None = None
    onboarding_status: str
    charges_enabled: bool
    payouts_enabled: bool
    payments_enabled: bool
    platform_fee_percent: float
    onboarded_at: datetime | None = None


class PaymentSettingsUpdate(BaseModel):
    payments_enabled: bool


class PlatformFeeUpdate(BaseModel):
    """Admin override; null restores the default."""
    platform_fee_percent: float | None = Field(default=None, ge=0, le=100)


class WebhookAck(BaseModel):
    received: bool = True
    kind: str
    outcome: str
