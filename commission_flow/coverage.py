from __future__ import annotations

from dataclasses import dataclass, field

from commission_flow.errors import ConsistencyError
from commission_flow.models import (
    BucketSource,
    FallbackEntry,
    POItem,
    PriceBucket,
    PurchaseOrder,
    SaleOrder,
    UnsoldSKU,
)
from commission_flow.repository import Repository
from commission_flow.settlement import NC_COMMISSION_PERCENT, build_bucket


@dataclass(frozen=True)
class SoldLot:
    so_id: str
    qty: int
    a_sp_per_box: float


@dataclass(frozen=True)
class Coverage:
    sku_id: str
    sku_name: str
    po_qty: int
    closed_qty: int
    fallback_qty: int
    sold: tuple[SoldLot, ...] = field(default_factory=tuple)
    fallback: FallbackEntry | None = None

    @property
    def unsold_qty(self) -> int:
        return self.po_qty - self.closed_qty - self.fallback_qty

    def price_buckets(self, item: POItem, commission_percent: float = NC_COMMISSION_PERCENT) -> list[PriceBucket]:
        """Sold buckets in sale-order order, then the fallback bucket if any."""
        buckets = [
            build_bucket(
                lot.qty,
                lot.a_sp_per_box,
                item.labour_cost_per_box,
                item.transport_cost_per_box,
                BucketSource.SALE_ORDER,
                lot.so_id,
                commission_percent,
            )
            for lot in self.sold
        ]
        if self.fallback is not None and self.fallback.fallback_qty > 0:
            buckets.append(
                build_bucket(
                    self.fallback.fallback_qty,
                    self.fallback.fallback_a_sp_per_box,
                    item.labour_cost_per_box,
                    item.transport_cost_per_box,
                    BucketSource.FALLBACK,
                    BucketSource.FALLBACK.value,
                    commission_percent,
                )
            )
        return buckets

    def as_unsold(self) -> UnsoldSKU:
        return UnsoldSKU(
            sku_id=self.sku_id,
            sku_name=self.sku_name,
            po_qty=self.po_qty,
            closed_qty=self.closed_qty,
            unsold_qty=self.unsold_qty,
            fallback_qty=self.fallback_qty,
        )


def closed_lots_for_item(sale_orders: list[SaleOrder], po_id: str, sku_id: str) -> list[SoldLot]:
    lots: list[SoldLot] = []
    for so in sale_orders:
        if so.po_id != po_id:
            continue
        so_item = so.item(sku_id)
        if so_item is not None and so_item.is_closed:
            lots.append(SoldLot(so_id=so.id, qty=so_item.so_qty, a_sp_per_box=float(so_item.a_sp)))
    return lots


def closed_qty_for_item(sale_orders: list[SaleOrder], po_id: str, sku_id: str) -> int:
    return sum(lot.qty for lot in closed_lots_for_item(sale_orders, po_id, sku_id))


def resolve_item(
    po: PurchaseOrder,
    item: POItem,
    sale_orders: list[SaleOrder],
    fallback: FallbackEntry | None,
) -> Coverage:
    sold = closed_lots_for_item(sale_orders, po.id, item.sku_id)
    coverage = Coverage(
        sku_id=item.sku_id,
        sku_name=item.sku_name,
        po_qty=item.po_qty,
        closed_qty=sum(lot.qty for lot in sold),
        fallback_qty=fallback.fallback_qty if fallback is not None else 0,
        sold=tuple(sold),
        fallback=fallback,
    )
    if coverage.unsold_qty < 0:
        raise ConsistencyError(
            f"SKU {item.sku_id} on {po.id} is over-covered: "
            f"closed {coverage.closed_qty} + fallback {coverage.fallback_qty} > po_qty {item.po_qty}",
            {"po_id": po.id, "sku_id": item.sku_id},
        )
    return coverage


def resolve_po(repo: Repository, po: PurchaseOrder) -> list[Coverage]:
    """Recompute coverage for every item from the stored sale orders and fallback entries."""
    sale_orders = repo.list_sos_for_po(po.id)
    return [
        resolve_item(po, item, sale_orders, repo.get_fallback(po.id, item.sku_id))
        for item in po.items
    ]
