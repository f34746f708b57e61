"""Merchant account status: onboarding, capabilities, payments toggle.

Capability flags come from the processor (account events or an explicit
refresh). payments_enabled is the merchant's own switch and is cleared in the
same UPDATE that drops charge capability or disconnects the account.
"""
import logging
from datetime import datetime

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from chatfood.core.config import settings
from chatfood.core.errors import InvalidFeePercent, PaymentsNotEnabled, ValidationError
from chatfood.models import MerchantAccount, Restaurant
from chatfood.models.merchant_account import (
    ONBOARDING_COMPLETE,
    ONBOARDING_NOT_STARTED,
    ONBOARDING_PENDING,
    ONBOARDING_PENDING_VERIFICATION,
)
from chatfood.services.processor import AccountSnapshot, PaymentProcessor

log = logging.getLogger("chatfood.accounts")


def get_account(db: Session, merchant_id: int) -> MerchantAccount | None:
    return db.exec(select(MerchantAccount).where(MerchantAccount.merchant_id == merchant_id)).first()


def get_or_create_account(db: Session, merchant_id: int) -> MerchantAccount:
    account = get_account(db, merchant_id)
    if account:
        return account
    account = MerchantAccount(merchant_id=merchant_id)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def find_by_stripe_id(db: Session, stripe_account_id: str) -> MerchantAccount | None:
    return db.exec(select(MerchantAccount).where(MerchantAccount.stripe_account_id == stripe_account_id)).first()


def is_payment_ready(account: MerchantAccount | None) -> bool:
    return bool(account and account.payments_enabled and account.charges_enabled and account.stripe_account_id)


def effective_fee_percent(account: MerchantAccount | None) -> float:
    if account is None or account.platform_fee_percent is None:
        return float(settings.default_platform_fee_percent)
    return float(account.platform_fee_percent)


def derive_onboarding_status(charges_enabled: bool, payouts_enabled: bool, details_submitted: bool) -> str:
    if charges_enabled and payouts_enabled:
        return ONBOARDING_COMPLETE
    if details_submitted:
        return ONBOARDING_PENDING_VERIFICATION
    return ONBOARDING_PENDING


def apply_capabilities(db: Session, snapshot: AccountSnapshot) -> bool:
    """Write capability flags for a connected account; False when the row already matches."""
    status = derive_onboarding_status(snapshot.charges_enabled, snapshot.payouts_enabled, snapshot.details_submitted)
    now = datetime.utcnow()
    values = {
        "charges_enabled": snapshot.charges_enabled,
        "payouts_enabled": snapshot.payouts_enabled,
        "onboarding_status": status,
        # First completion time is kept across identical redeliveries
        "onboarded_at": func.coalesce(MerchantAccount.onboarded_at, now) if status == ONBOARDING_COMPLETE else None,
        "updated_at": now,
    }
    differs = [
        MerchantAccount.charges_enabled != snapshot.charges_enabled,
        MerchantAccount.payouts_enabled != snapshot.payouts_enabled,
        MerchantAccount.onboarding_status != status,
    ]
    if not snapshot.charges_enabled:
        values["payments_enabled"] = False
        differs.append(MerchantAccount.payments_enabled.is_(True))
    stmt = (
        update(MerchantAccount)
        .where(MerchantAccount.stripe_account_id == snapshot.id, or_(*differs))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount > 0


def disconnect_account(db: Session, stripe_account_id: str) -> bool:
    """Deauthorization: back to not_started with every flag off."""
    stmt = (
        update(MerchantAccount)
        .where(MerchantAccount.stripe_account_id == stripe_account_id)
        .values(
            stripe_account_id=None,
            onboarding_status=ONBOARDING_NOT_STARTED,
            charges_enabled=False,
            payouts_enabled=False,
            payments_enabled=False,
            onboarded_at=None,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount > 0


def start_onboarding(
    db: Session,
    processor: PaymentProcessor,
    restaurant: Restaurant,
    refresh_url: str,
    return_url: str,
) -> tuple[str, str]:
    """Create the Express account if missing and return (account_id, onboarding_url)."""
    account = get_or_create_account(db, restaurant.id)
    account_id = account.stripe_account_id
    if not account_id:
        created_id = processor.create_connected_account(
            restaurant.email, restaurant.restaurant_name, restaurant.id
        )
        stmt = (
            update(MerchantAccount)
            .where(MerchantAccount.merchant_id == restaurant.id, MerchantAccount.stripe_account_id.is_(None))
            .values(
                stripe_account_id=created_id,
                onboarding_status=ONBOARDING_PENDING,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        db.commit()
        db.refresh(account)
        if result.rowcount == 0:
            log.warning(
                "Concurrent onboarding for merchant %s: keeping %s, account %s unused",
                restaurant.id,
                account.stripe_account_id,
                created_id,
            )
        account_id = account.stripe_account_id
        log.info("Onboarding started: merchant=%s account=%s", restaurant.id, account_id)
    url = processor.create_onboarding_link(account_id, refresh_url, return_url)
    return account_id, url


def refresh_from_processor(db: Session, processor: PaymentProcessor, account: MerchantAccount) -> MerchantAccount:
    if not account.stripe_account_id:
        return account
    snapshot = processor.retrieve_account(account.stripe_account_id)
    if apply_capabilities(db, snapshot):
        log.info(
            "Account %s refreshed: charges=%s payouts=%s",
            snapshot.id,
            snapshot.charges_enabled,
            snapshot.payouts_enabled,
        )
    db.refresh(account)
    return account


def set_payments_enabled(db: Session, merchant_id: int, enabled: bool) -> MerchantAccount:
    """Merchant toggle. Turning on requires a connected, charge-capable account."""
    conditions = [MerchantAccount.merchant_id == merchant_id]
    if enabled:
        conditions += [MerchantAccount.charges_enabled.is_(True), MerchantAccount.stripe_account_id.is_not(None)]
    stmt = (
        update(MerchantAccount)
        .where(*conditions)
        .values(payments_enabled=enabled, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    account = get_or_create_account(db, merchant_id)
    if result.rowcount == 0 and enabled:
        raise PaymentsNotEnabled("Complete Stripe onboarding before enabling online payments.")
    db.refresh(account)
    return account


def set_platform_fee(db: Session, merchant_id: int, percent: float | None) -> MerchantAccount:
    if percent is not None and not 0 <= percent <= 100:
        raise InvalidFeePercent("Platform fee percent must be between 0 and 100.")
    account = get_or_create_account(db, merchant_id)
    account.platform_fee_percent = percent
    account.updated_at = datetime.utcnow()
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def dashboard_link(processor: PaymentProcessor, account: MerchantAccount | None) -> str:
    if not account or not account.stripe_account_id:
        raise ValidationError("Stripe account not connected.")
    return processor.create_dashboard_link(account.stripe_account_id)
