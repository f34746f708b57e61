"""Admin API (X-Admin-Secret): reconciliation log and platform fee overrides."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from chatfood.api.deps import require_admin
from chatfood.core.database import get_db
from chatfood.models import PaymentEventLog, Restaurant
from chatfood.schemas.orders import PaymentEventResponse
from chatfood.schemas.payments import PlatformFeeUpdate
from chatfood.services import accounts

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/payment-events", response_model=list[PaymentEventResponse])
def payment_events(
    outcome: str | None = Query(None, description="applied | noop | anomaly | not_found | ignored"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    stmt = select(PaymentEventLog).order_by(PaymentEventLog.id.desc()).limit(limit)
    if outcome:
        stmt = stmt.where(PaymentEventLog.outcome == outcome)
    return [PaymentEventResponse.model_validate(e, from_attributes=True) for e in db.exec(stmt).all()]


@router.put("/merchants/{merchant_id}/fee")
def set_merchant_fee(merchant_id: int, body: PlatformFeeUpdate, db: Session = Depends(get_db)):
    if not db.get(Restaurant, merchant_id):
        raise HTTPException(status_code=404, detail="Restaurant not found.")
    account = accounts.set_platform_fee(db, merchant_id, body.platform_fee_percent)
    return {
        "merchant_id": merchant_id,
        "platform_fee_percent": account.platform_fee_percent,
        "effective_fee_percent": accounts.effective_fee_percent(account),
    }
