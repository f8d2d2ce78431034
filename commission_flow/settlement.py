"""Seller patty price arithmetic.

settled = (price - (labour + transport)) * (1 - percent / 100), rounded to
cents half away from zero. A negative result is returned as-is; callers
flag it through ``PriceBucket.negative_margin``.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from commission_flow.models import BucketSource, PriceBucket

NC_COMMISSION_PERCENT = 6
CENT = Decimal("0.01")


def _dec(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def to_cents(value: float | int | Decimal) -> float:
    return float(_dec(value).quantize(CENT, rounding=ROUND_HALF_UP))


def settle_unit_price(
    price: float,
    labour: float,
    transport: float,
    commission_percent: float = NC_COMMISSION_PERCENT,
) -> float:
    net = _dec(price) - (_dec(labour) + _dec(transport))
    commission = net * (_dec(commission_percent) / Decimal(100))
    return to_cents(net - commission)


def build_bucket(
    qty: int,
    price: float,
    labour: float,
    transport: float,
    source: BucketSource,
    source_id: str,
    commission_percent: float = NC_COMMISSION_PERCENT,
) -> PriceBucket:
    return PriceBucket(
        qty=qty,
        a_sp_per_box=float(price),
        settled=settle_unit_price(price, labour, transport, commission_percent),
        source=source,
        source_id=source_id,
    )


def weighted_average(buckets: Iterable[PriceBucket]) -> float:
    total_qty = Decimal(0)
    weighted_sum = Decimal(0)
    for bucket in buckets:
        total_qty += bucket.qty
        weighted_sum += bucket.qty * _dec(bucket.settled)
    if total_qty <= 0:
        return 0.0
    return to_cents(weighted_sum / total_qty)
