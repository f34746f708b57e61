"""Order ledger: creation and conditional payment transitions.

Payment fields are only changed through transition_payment, a single
UPDATE ... WHERE payment_status = 'pending'. Two concurrent deliveries of the
same event both run it; exactly one sees rowcount == 1.
"""
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session, select

from chatfood.models import Order
from chatfood.models.order import PAYMENT_PENDING
from chatfood.schemas.checkout import CheckoutRequest
from chatfood.services.fees import FeeBreakdown


def create_order(
    db: Session,
    *,
    order_id: str,
    merchant_id: int,
    request: CheckoutRequest,
    fees: FeeBreakdown,
    payment_intent_id: str,
    currency: str,
) -> Order:
    order = Order(
        id=order_id,
        merchant_id=merchant_id,
        customer_name=(request.customer_name or "").strip() or None,
        customer_phone=request.customer_phone.strip(),
        fulfillment_type=request.order_type,
        pickup_time=request.pickup_time or None,
        note=request.note or None,
        items=[item.model_dump() for item in request.order_items],
        total=fees.total,
        currency=currency,
        platform_fee=fees.platform_fee,
        payment_intent_id=payment_intent_id,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def find_by_intent(db: Session, payment_intent_id: str) -> Order | None:
    return db.exec(select(Order).where(Order.payment_intent_id == payment_intent_id)).first()


def locate_order(db: Session, payment_intent_id: str, order_id_hint: str | None = None) -> Order | None:
    """Metadata order id first, then the intent reference (metadata attach may have failed)."""
    if order_id_hint:
        order = db.get(Order, order_id_hint)
        if order and order.payment_intent_id == payment_intent_id:
            return order
    return find_by_intent(db, payment_intent_id)


def transition_payment(db: Session, order_id: str, payment_status: str, **values) -> bool:
    """Compare-and-set from pending; True when this call performed the transition."""
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.payment_status == PAYMENT_PENDING)
        .values(payment_status=payment_status, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def list_orders(db: Session, merchant_id: int, limit: int = 100, payment_status: str | None = None) -> list[Order]:
    stmt = select(Order).where(Order.merchant_id == merchant_id)
    if payment_status:
        stmt = stmt.where(Order.payment_status == payment_status)
    stmt = stmt.order_by(Order.created_at.desc()).limit(limit)
    return list(db.exec(stmt).all())
