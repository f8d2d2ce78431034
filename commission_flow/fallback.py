from __future__ import annotations

from commission_flow.coverage import closed_qty_for_item
from commission_flow.errors import InvalidStateError, NotFoundError, ValidationError
from commission_flow.locks import PerKeyLock
from commission_flow.logging_utils import get_logger
from commission_flow.models import FallbackEntry, POStatus
from commission_flow.repository import Repository

log = get_logger(__name__)

OPEN_PO_STATUSES = {POStatus.DRAFT, POStatus.EXPECTED_SUBMITTED}


class FallbackRegistry:
    """Manual fallback prices for quantity no closed sale order covers.

    One entry per (PO, SKU). A new submission replaces the previous entry for
    that key; it is never merged with it.
    """

    def __init__(self, repo: Repository, locks: PerKeyLock | None = None) -> None:
        self.repo = repo
        self.locks = locks or PerKeyLock()

    def get(self, po_id: str, sku_id: str) -> FallbackEntry | None:
        return self.repo.get_fallback(po_id, sku_id)

    def list_for_po(self, po_id: str) -> list[FallbackEntry]:
        if self.repo.get_po(po_id) is None:
            raise NotFoundError(f"PO {po_id} not found", {"po_id": po_id})
        return self.repo.list_fallbacks(po_id)

    def submit(self, po_id: str, entries: list[FallbackEntry]) -> list[FallbackEntry]:
        with self.locks.hold(po_id):
            self._validate(po_id, entries)
            saved = self.repo.save_fallbacks(po_id, entries)
        log.info(
            "fallback prices saved po_id=%s skus=%s",
            po_id,
            ",".join(e.sku_id for e in saved),
        )
        return saved

    def _validate(self, po_id: str, entries: list[FallbackEntry]) -> None:
        po = self.repo.get_po(po_id)
        if po is None:
            raise NotFoundError(f"PO {po_id} not found", {"po_id": po_id})
        if po.status not in OPEN_PO_STATUSES:
            raise InvalidStateError(
                f"Fallback prices cannot be changed while PO {po_id} is {po.status.value}",
                {"po_id": po_id, "status": po.status.value},
            )
        if not entries:
            raise ValidationError("No fallback entries submitted", {"po_id": po_id})

        seen: set[str] = set()
        # closed quantity is recomputed for every submission, never cached
        sale_orders = self.repo.list_sos_for_po(po_id)
        for entry in entries:
            if entry.sku_id in seen:
                raise ValidationError(
                    f"SKU {entry.sku_id} appears more than once in the batch",
                    {"sku_id": entry.sku_id},
                )
            seen.add(entry.sku_id)

            item = po.item(entry.sku_id)
            if item is None:
                raise ValidationError(f"SKU {entry.sku_id} not found in PO {po_id}", {"sku_id": entry.sku_id})
            if entry.fallback_qty < 0:
                raise ValidationError(
                    f"Fallback quantity for SKU {entry.sku_id} cannot be negative",
                    {"sku_id": entry.sku_id, "fallback_qty": entry.fallback_qty},
                )
            if entry.fallback_a_sp_per_box <= 0:
                raise ValidationError(
                    f"Fallback price for SKU {entry.sku_id} must be greater than 0",
                    {"sku_id": entry.sku_id, "fallback_a_sp_per_box": entry.fallback_a_sp_per_box},
                )

            closed_qty = closed_qty_for_item(sale_orders, po_id, entry.sku_id)
            unsold_qty = item.po_qty - closed_qty
            if entry.fallback_qty > unsold_qty:
                log.warning(
                    "fallback rejected po_id=%s sku_id=%s qty=%s unsold=%s",
                    po_id,
                    entry.sku_id,
                    entry.fallback_qty,
                    unsold_qty,
                )
                raise ValidationError(
                    f"Fallback quantity {entry.fallback_qty} exceeds unsold quantity {unsold_qty} "
                    f"for SKU {entry.sku_id}",
                    {"sku_id": entry.sku_id, "fallback_qty": entry.fallback_qty, "max_qty": unsold_qty},
                )
