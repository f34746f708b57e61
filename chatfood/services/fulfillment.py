"""Staff-driven fulfillment status, only for paid orders."""
import logging
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session

from chatfood.core.errors import InvalidStatusTransition, OrderNotFound, OrderNotFulfillable, StaleOrderState
from chatfood.models import Order
from chatfood.models.order import (
    PAYMENT_PAID,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PREPARING,
    STATUS_READY,
)

log = logging.getLogger("chatfood.fulfillment")

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PREPARING, STATUS_CANCELLED},
    STATUS_PREPARING: {STATUS_READY, STATUS_CANCELLED},
    STATUS_READY: {STATUS_DELIVERED, STATUS_CANCELLED},
}


def update_fulfillment_status(db: Session, merchant_id: int, order_id: str, new_status: str) -> Order:
    order = db.get(Order, order_id)
    if not order or order.merchant_id != merchant_id:
        raise OrderNotFound("Order not found.")
    if order.payment_status != PAYMENT_PAID:
        raise OrderNotFulfillable("Order is not paid.")
    current = order.status
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(f"Cannot move order from {current} to {new_status}.")
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == current, Order.payment_status == PAYMENT_PAID)
        .values(status=new_status, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    if result.rowcount != 1:
        raise StaleOrderState("Order was updated by someone else, reload and retry.")
    db.refresh(order)
    log.info("Order %s: %s -> %s", order_id, current, new_status)
    return order
