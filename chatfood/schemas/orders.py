from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class OrderResponse(BaseModel):
    id: str
    customer_name: str | None = None
    customer_phone: str
    fulfillment_type: str
    pickup_time: str | None = None
    note: str | None = None
    items: list
    total: int
    currency: str
    platform_fee: int
    processor_fee: int | None = None
    status: str
    payment_status: str
    payment_intent_id: str
    paid_at: datetime | None = None
    created_at: datetime | None = None


class FulfillmentUpdate(BaseModel):
    status: Literal["preparing", "ready", "delivered", "cancelled"]


class PaymentEventResponse(BaseModel):
    id: int
    event_id: str | None = None
    event_type: str
    kind: str
    reference: str | None = None
    outcome: str
    detail: str | None = None
    created_at: datetime
