"""Reconciliation log: one row per processed webhook delivery."""
from datetime import datetime

from sqlmodel import Field, SQLModel


class PaymentEventLog(SQLModel, table=True):
    __tablename__ = "payment_event_logs"
    id: int | None = Field(default=None, primary_key=True)
    event_id: str | None = Field(default=None, index=True)
    event_type: str
    kind: str = Field(index=True)
    reference: str | None = Field(default=None, index=True)  # payment intent or connected account id
    outcome: str = Field(index=True)  # applied | noop | anomaly | not_found | ignored
    detail: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
