from __future__ import annotations

import copy
from typing import Any, Protocol

from commission_flow.models import FallbackEntry, POItem, PurchaseOrder, SaleOrder


class Repository(Protocol):
    def get_po(self, po_id: str) -> PurchaseOrder | None: ...

    def list_pos(self) -> list[PurchaseOrder]: ...

    def save_po(self, po: PurchaseOrder) -> PurchaseOrder: ...

    def get_so(self, so_id: str) -> SaleOrder | None: ...

    def list_sos(self) -> list[SaleOrder]: ...

    def list_sos_for_po(self, po_id: str) -> list[SaleOrder]: ...

    def save_so(self, so: SaleOrder) -> SaleOrder: ...

    def get_fallback(self, po_id: str, sku_id: str) -> FallbackEntry | None: ...

    def list_fallbacks(self, po_id: str) -> list[FallbackEntry]: ...

    def save_fallbacks(self, po_id: str, entries: list[FallbackEntry]) -> list[FallbackEntry]: ...


class InMemoryRepository:
    """Dict-backed store. Reads and writes copy, so callers never alias stored objects."""

    def __init__(self) -> None:
        self._pos: dict[str, PurchaseOrder] = {}
        self._sos: dict[str, SaleOrder] = {}
        self._fallbacks: dict[tuple[str, str], FallbackEntry] = {}

    def get_po(self, po_id: str) -> PurchaseOrder | None:
        po = self._pos.get(po_id)
        return None if po is None else copy.deepcopy(po)

    def list_pos(self) -> list[PurchaseOrder]:
        return [copy.deepcopy(po) for po in self._pos.values()]

    def save_po(self, po: PurchaseOrder) -> PurchaseOrder:
        self._pos[po.id] = copy.deepcopy(po)
        return po

    def get_so(self, so_id: str) -> SaleOrder | None:
        so = self._sos.get(so_id)
        return None if so is None else copy.deepcopy(so)

    def list_sos(self) -> list[SaleOrder]:
        return [copy.deepcopy(so) for so in self._sos.values()]

    def list_sos_for_po(self, po_id: str) -> list[SaleOrder]:
        return [copy.deepcopy(so) for so in self._sos.values() if so.po_id == po_id]

    def save_so(self, so: SaleOrder) -> SaleOrder:
        self._sos[so.id] = copy.deepcopy(so)
        return so

    def get_fallback(self, po_id: str, sku_id: str) -> FallbackEntry | None:
        entry = self._fallbacks.get((po_id, sku_id))
        return None if entry is None else copy.deepcopy(entry)

    def list_fallbacks(self, po_id: str) -> list[FallbackEntry]:
        return [copy.deepcopy(e) for (pid, _), e in self._fallbacks.items() if pid == po_id]

    def save_fallbacks(self, po_id: str, entries: list[FallbackEntry]) -> list[FallbackEntry]:
        staged = {(po_id, e.sku_id): copy.deepcopy(e) for e in entries}
        self._fallbacks.update(staged)
        return entries


DEMO_PO_ID = "PO-001"


def seed_demo_data(repo: Repository) -> PurchaseOrder:
    """Insert the demo PO unless it is already stored. A stored one is returned untouched."""
    existing = repo.get_po(DEMO_PO_ID)
    if existing is not None:
        return existing
    po = PurchaseOrder(
        id=DEMO_PO_ID,
        vendor_id="VENDOR-001",
        items=[
            POItem("SKU-001", "Pomo Bhuj SSSS", 500, labour_cost_per_box=50, transport_cost_per_box=30),
            POItem("SKU-002", "Pomo Bhuj SSS", 300, labour_cost_per_box=50, transport_cost_per_box=30),
            POItem("SKU-003", "Basmati Rice 25kg", 100, labour_cost_per_box=40, transport_cost_per_box=25),
        ],
    )
    return repo.save_po(po)


def storage_state(repo: Repository) -> dict[str, Any]:
    pos = repo.list_pos()
    return {
        "purchase_orders": [po.to_dict() for po in pos],
        "sale_orders": [so.to_dict() for so in repo.list_sos()],
        "fallback_prices": [
            {"po_id": po.id, "fallbacks": [e.to_dict() for e in repo.list_fallbacks(po.id)]}
            for po in pos
        ],
    }
