from datetime import datetime

from sqlmodel import Field, SQLModel

ONBOARDING_NOT_STARTED = "not_started"
ONBOARDING_PENDING = "pending"
ONBOARDING_PENDING_VERIFICATION = "pending_verification"
ONBOARDING_COMPLETE = "complete"


class MerchantAccount(SQLModel, table=True):
    """Connected account state; capability flags only change through processor events."""

    __tablename__ = "merchant_accounts"
    id: int | None = Field(default=None, primary_key=True)
    merchant_id: int = Field(foreign_key="restaurants.id", unique=True, index=True)
    stripe_account_id: str | None = Field(default=None, unique=True, index=True)
    onboarding_status: str = ONBOARDING_NOT_STARTED  # not_started | pending | pending_verification | complete
    charges_enabled: bool = False
    payouts_enabled: bool = False
    # Merchant's own toggle; cleared whenever charges_enabled drops or the account is disconnected
    payments_enabled: bool = False
    platform_fee_percent: float | None = None  # None -> settings.default_platform_fee_percent
    onboarded_at: datetime | None = None
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)
