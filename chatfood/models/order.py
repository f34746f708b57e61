from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"
TERMINAL_PAYMENT_STATUSES = frozenset({PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_CANCELLED})

STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PENDING = "pending"
STATUS_PREPARING = "preparing"
STATUS_READY = "ready"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"


class Order(SQLModel, table=True):
    """Order ledger row. Amounts are integer minor units (cents)."""

    __tablename__ = "orders"
    id: str = Field(primary_key=True)
    merchant_id: int = Field(foreign_key="restaurants.id", index=True)
    customer_name: str | None = None
    customer_phone: str
    fulfillment_type: str = "pickup"  # pickup | delivery
    pickup_time: str | None = None
    note: str | None = None
    # Line items as captured at checkout (unit prices included); never re-priced
    items: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    total: int
    currency: str = "eur"
    platform_fee: int = 0
    processor_fee: int | None = None  # Stripe fee, known after settlement
    payment_method: str | None = None
    # Fulfillment: pending_payment until paid, then pending -> preparing -> ready -> delivered | cancelled
    status: str = Field(default=STATUS_PENDING_PAYMENT, index=True)
    payment_status: str = Field(default=PAYMENT_PENDING, index=True)  # pending | paid | failed | cancelled
    payment_intent_id: str = Field(unique=True, index=True)
    paid_at: datetime | None = None
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)
