"""Order total and platform fee, integer minor units.

The fee is rounded half-up once on the aggregate total, never per line.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from chatfood.core.config import settings
from chatfood.core.errors import EmptyOrder, InvalidFeePercent, InvalidLineItem
from chatfood.schemas.checkout import LineItem


@dataclass(frozen=True)
class FeeBreakdown:
    total: int
    platform_fee: int
    fee_percent: float


def _line_subtotal(index: int, item: LineItem) -> int:
    if item.unit_price < 0:
        raise InvalidLineItem(f"Item {index}: unit price must not be negative.")
    if item.quantity < 1:
        raise InvalidLineItem(f"Item {index}: quantity must be at least 1.")
    subtotal = item.unit_price * item.quantity
    for addon in item.addons:
        if addon.price < 0:
            raise InvalidLineItem(f"Item {index}: add-on price must not be negative.")
        if addon.quantity < 1:
            raise InvalidLineItem(f"Item {index}: add-on quantity must be at least 1.")
        subtotal += addon.price * addon.quantity
    return subtotal


def resolve_fee_percent(fee_percent: float | None) -> float:
    """Merchant override or the configured default; 0 is a valid override."""
    if fee_percent is None:
        return float(settings.default_platform_fee_percent)
    if not 0 <= fee_percent <= 100:
        raise InvalidFeePercent("Platform fee percent must be between 0 and 100.")
    return float(fee_percent)


def calculate_fees(items: Sequence[LineItem], fee_percent: float | None = None) -> FeeBreakdown:
    if not items:
        raise EmptyOrder("Order has no items.")
    percent = resolve_fee_percent(fee_percent)
    total = sum(_line_subtotal(i, item) for i, item in enumerate(items))
    fee = (Decimal(total) * Decimal(str(percent)) / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return FeeBreakdown(total=total, platform_fee=int(fee), fee_percent=percent)
