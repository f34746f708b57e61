from typing import Literal

from pydantic import BaseModel, Field


class AddOn(BaseModel):
    name: str = ""
    price: int  # minor units
    quantity: int = 1


class LineItem(BaseModel):
    """One cart line. Prices are minor units; validated by the fee calculator."""
    product_id: str
    name: str = ""
    unit_price: int
    quantity: int
    addons: list[AddOn] = Field(default_factory=list)


class CheckoutRequest(BaseModel):
    """Public ordering page checkout: creates the payment intent and a pending order."""
    restaurant_slug: str = Field(min_length=1)
    order_items: list[LineItem]
    customer_name: str | None = None
    customer_phone: str = Field(min_length=1)
    order_type: Literal["pickup", "delivery"] = "pickup"
    pickup_time: str | None = None
    note: str | None = None


class CheckoutResponse(BaseModel):
    success: bool = True
    client_secret: str
    payment_intent_id: str
    order_id: str
    amount: int
    currency: str


class PaymentAvailability(BaseModel):
    restaurant_slug: str
    online_payments: bool
    currency: str
