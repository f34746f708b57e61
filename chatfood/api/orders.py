"""Restaurant dashboard: orders list and fulfillment status."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session

from chatfood.api.deps import get_current_merchant
from chatfood.core.database import get_db
from chatfood.models import Restaurant
from chatfood.models.order import STATUS_DELIVERED
from chatfood.schemas.orders import FulfillmentUpdate, OrderResponse
from chatfood.services import ledger
from chatfood.services.fulfillment import update_fulfillment_status
from chatfood.services.notify import request_review

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=list[OrderResponse])
def list_orders(
    payment_status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    orders = ledger.list_orders(db, restaurant.id, limit=limit, payment_status=payment_status)
    return [OrderResponse.model_validate(o, from_attributes=True) for o in orders]


@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: str,
    body: FulfillmentUpdate,
    background_tasks: BackgroundTasks,
    restaurant: Restaurant = Depends(get_current_merchant),
    db: Session = Depends(get_db),
):
    order = update_fulfillment_status(db, restaurant.id, order_id, body.status)
    if order.status == STATUS_DELIVERED:
        background_tasks.add_task(request_review, order.id)
    return OrderResponse.model_validate(order, from_attributes=True)
