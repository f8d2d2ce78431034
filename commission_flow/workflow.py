from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import replace

from commission_flow.coverage import closed_qty_for_item
from commission_flow.errors import InvalidStateError, NotFoundError, ValidationError
from commission_flow.locks import PerKeyLock
from commission_flow.logging_utils import get_logger
from commission_flow.models import (
    POItem,
    POStatus,
    PurchaseOrder,
    SaleOrder,
    SOItem,
    SOItemStatus,
    SOStatus,
)
from commission_flow.repository import Repository

log = get_logger(__name__)

PO_TRANSITIONS: dict[POStatus, set[POStatus]] = {
    # settlement may also run straight from DRAFT; E-PP submission is optional
    POStatus.DRAFT: {POStatus.EXPECTED_SUBMITTED, POStatus.PATTY_GENERATED},
    POStatus.EXPECTED_SUBMITTED: {POStatus.PATTY_GENERATED},
    POStatus.PATTY_GENERATED: {POStatus.FINALIZED},
    POStatus.FINALIZED: set(),
}

SO_TRANSITIONS: dict[SOStatus, set[SOStatus]] = {
    SOStatus.DRAFT: {SOStatus.EXPECTED_SUBMITTED},
    SOStatus.EXPECTED_SUBMITTED: {SOStatus.ACTUAL_SUBMITTED},
    SOStatus.ACTUAL_SUBMITTED: {SOStatus.COMPLETED},
    SOStatus.COMPLETED: set(),
}

SO_ITEM_TRANSITIONS: dict[SOItemStatus, set[SOItemStatus]] = {
    SOItemStatus.EXPECTED_SUBMITTED: {SOItemStatus.ACTUAL_SUBMITTED},
    SOItemStatus.ACTUAL_SUBMITTED: set(),
}

# sale orders feeding these POs are frozen: their settlement is already derived
LOCKED_PO_STATUSES = {POStatus.PATTY_GENERATED, POStatus.FINALIZED}

# orders whose items carry actual selling prices
CLOSED_SO_STATUSES = {SOStatus.ACTUAL_SUBMITTED, SOStatus.COMPLETED}


def can_transition(current: POStatus | SOStatus, target: POStatus | SOStatus) -> bool:
    table = PO_TRANSITIONS if isinstance(current, POStatus) else SO_TRANSITIONS
    return target in table.get(current, set())


def ensure_transition(entity_id: str, current: POStatus | SOStatus, target: POStatus | SOStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStateError(
            f"{entity_id} cannot move from {current.value} to {target.value}",
            {"id": entity_id, "status": current.value, "target": target.value},
        )


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def _is_positive(value: float | None) -> bool:
    return value is not None and value > 0


class OrderWorkflow:
    """Stage-guarded mutations of purchase and sale orders.

    Every call that touches a PO, or a sale order linked to one, runs under
    the same per-PO lock the reconciliation engine uses.
    """

    def __init__(self, repo: Repository, locks: PerKeyLock | None = None) -> None:
        self.repo = repo
        self.locks = locks or PerKeyLock()

    @contextmanager
    def _hold(self, *keys: str | None) -> Iterator[None]:
        # keys are always taken in sorted order
        with ExitStack() as stack:
            for key in sorted({k for k in keys if k is not None}):
                stack.enter_context(self.locks.hold(key))
            yield

    @contextmanager
    def _hold_sale_order(self, so_id: str, *po_ids: str | None) -> Iterator[SaleOrder | None]:
        """Yield the stored order while holding its PO's lock and those of ``po_ids``."""
        while True:
            seen = self.repo.get_so(so_id)
            seen_po_id = seen.po_id if seen is not None else None
            with self._hold(seen_po_id, *po_ids):
                current = self.repo.get_so(so_id)
                if (current.po_id if current is not None else None) == seen_po_id:
                    yield current
                    return
            # relinked between the two reads; lock the new PO and look again

    # -- purchase orders -------------------------------------------------

    def get_purchase_order(self, po_id: str) -> PurchaseOrder:
        po = self.repo.get_po(po_id)
        if po is None:
            raise NotFoundError(f"PO {po_id} not found", {"po_id": po_id})
        return po

    def create_purchase_order(
        self,
        vendor_id: str,
        items: list[POItem],
        po_id: str | None = None,
    ) -> PurchaseOrder:
        po_id = po_id or new_id("PO")
        if not vendor_id.strip():
            raise ValidationError("vendor_id is required")
        if not items:
            raise ValidationError("A purchase order needs at least one item")

        seen: set[str] = set()
        for item in items:
            if item.sku_id in seen:
                raise ValidationError(f"SKU {item.sku_id} listed twice", {"sku_id": item.sku_id})
            seen.add(item.sku_id)
            if item.po_qty <= 0:
                raise ValidationError(
                    f"Quantity for SKU {item.sku_id} must be a positive integer",
                    {"sku_id": item.sku_id, "po_qty": item.po_qty},
                )
            if item.labour_cost_per_box < 0 or item.transport_cost_per_box < 0:
                raise ValidationError(f"Costs for SKU {item.sku_id} cannot be negative", {"sku_id": item.sku_id})
            if item.e_pp is not None and item.e_pp <= 0:
                raise ValidationError(f"E-PP for SKU {item.sku_id} must be greater than 0", {"sku_id": item.sku_id})
        # settled prices are only ever written by settlement
        items = [replace(item, tentative_a_pp=None, actual_seller_patty_price=None) for item in items]

        with self._hold(po_id):
            if self.repo.get_po(po_id) is not None:
                raise ValidationError(f"PO {po_id} already exists", {"po_id": po_id})
            po = PurchaseOrder(id=po_id, vendor_id=vendor_id, items=items)
            self.repo.save_po(po)
        log.info("po created po_id=%s vendor_id=%s items=%d", po_id, vendor_id, len(items))
        return po

    def set_expected_price(self, po_id: str, sku_id: str, e_pp: float) -> PurchaseOrder:
        with self._hold(po_id):
            po = self.get_purchase_order(po_id)
            if po.status != POStatus.DRAFT:
                raise InvalidStateError(
                    f"E-PP can only be edited while PO {po_id} is DRAFT",
                    {"po_id": po_id, "status": po.status.value},
                )
            item = self._po_item(po, sku_id)
            if not _is_positive(e_pp):
                raise ValidationError(f"E-PP for SKU {sku_id} must be greater than 0", {"sku_id": sku_id})
            item.e_pp = float(e_pp)
            po.touch()
            return self.repo.save_po(po)

    def submit_expected_prices(self, po_id: str) -> PurchaseOrder:
        with self._hold(po_id):
            po = self.get_purchase_order(po_id)
            ensure_transition(po_id, po.status, POStatus.EXPECTED_SUBMITTED)
            missing = [i.sku_id for i in po.items if not _is_positive(i.e_pp)]
            if missing:
                raise ValidationError(
                    "Please fill all Expected Purchase Prices before submitting",
                    {"po_id": po_id, "missing_skus": missing},
                )
            po.status = POStatus.EXPECTED_SUBMITTED
            po.touch()
            self.repo.save_po(po)
        log.info("po transition po_id=%s status=%s", po_id, po.status.value)
        return po

    def set_actual_patty_price(self, po_id: str, sku_id: str, price: float) -> PurchaseOrder:
        with self._hold(po_id):
            po = self.get_purchase_order(po_id)
            if po.status != POStatus.PATTY_GENERATED:
                raise InvalidStateError(
                    f"Seller patty price can only be adjusted while PO {po_id} is PATTY_GENERATED",
                    {"po_id": po_id, "status": po.status.value},
                )
            item = self._po_item(po, sku_id)
            if price is None or price < 0:
                raise ValidationError(f"Seller patty price for SKU {sku_id} cannot be negative", {"sku_id": sku_id})
            item.actual_seller_patty_price = float(price)
            po.touch()
            return self.repo.save_po(po)

    def finalize_purchase_order(self, po_id: str) -> PurchaseOrder:
        with self._hold(po_id):
            po = self.get_purchase_order(po_id)
            ensure_transition(po_id, po.status, POStatus.FINALIZED)
            po.status = POStatus.FINALIZED
            po.touch()
            self.repo.save_po(po)
        log.info("po transition po_id=%s status=%s", po_id, po.status.value)
        return po

    @staticmethod
    def _po_item(po: PurchaseOrder, sku_id: str) -> POItem:
        item = po.item(sku_id)
        if item is None:
            raise NotFoundError(f"SKU {sku_id} not found in PO {po.id}", {"po_id": po.id, "sku_id": sku_id})
        return item

    # -- sale orders -----------------------------------------------------

    def get_sale_order(self, so_id: str) -> SaleOrder:
        so = self.repo.get_so(so_id)
        if so is None:
            raise NotFoundError(f"SO {so_id} not found", {"so_id": so_id})
        return so

    def save_sale_order(self, so: SaleOrder) -> SaleOrder:
        """Create a DRAFT order or edit a stored one without changing its stage.

        Stage changes go through the submit and complete calls, which check
        the prices each stage needs.
        """
        with self._hold_sale_order(so.id, so.po_id) as existing:
            if existing is not None and so.status != existing.status:
                raise InvalidStateError(
                    f"SO {so.id} is {existing.status.value}; submit or complete it to change its stage",
                    {"so_id": so.id, "status": existing.status.value, "target": so.status.value},
                )
            if existing is not None and existing.po_id and existing.po_id != so.po_id:
                # relinking must not pull quantity out of an already settled PO
                self._ensure_po_open(existing.po_id)
            return self._save_sale_order(so, existing)

    def create_closed_sale_order(
        self,
        po_id: str,
        sku_id: str,
        qty: int,
        a_sp: float,
        so_id: str | None = None,
    ) -> SaleOrder:
        """Sell (part of) a PO's unsold quantity in one step, already at ACTUAL_SUBMITTED."""
        if qty <= 0:
            raise ValidationError("Please enter a valid quantity", {"sku_id": sku_id, "qty": qty})
        if not _is_positive(a_sp):
            raise ValidationError("Please enter a valid A-SP", {"sku_id": sku_id, "a_sp": a_sp})
        po = self.get_purchase_order(po_id)
        item = self._po_item(po, sku_id)
        so = SaleOrder(
            id=so_id or new_id("SO"),
            po_id=po_id,
            status=SOStatus.ACTUAL_SUBMITTED,
            items=[
                SOItem(
                    sku_id=sku_id,
                    sku_name=item.sku_name,
                    so_qty=qty,
                    a_sp=float(a_sp),
                    status=SOItemStatus.ACTUAL_SUBMITTED,
                )
            ],
        )
        with self._hold_sale_order(so.id, po_id) as existing:
            if existing is not None:
                raise ValidationError(f"SO {so.id} already exists", {"so_id": so.id})
            return self._save_sale_order(so, None, opening=SOStatus.ACTUAL_SUBMITTED)

    def submit_expected_selling_prices(self, so_id: str, prices: dict[str, float] | None = None) -> SaleOrder:
        with self._hold_sale_order(so_id) as existing:
            so = self.get_sale_order(so_id)
            ensure_transition(so_id, so.status, SOStatus.EXPECTED_SUBMITTED)
            self._apply_prices(so, prices or {}, "e_sp")
            missing = [i.sku_id for i in so.items if not _is_positive(i.e_sp)]
            if missing:
                raise ValidationError(
                    "Please fill all Expected Selling Prices before submitting",
                    {"so_id": so_id, "missing_skus": missing},
                )
            so.status = SOStatus.EXPECTED_SUBMITTED
            saved = self._save_sale_order(so, existing)
        log.info("so transition so_id=%s status=%s", so_id, saved.status.value)
        return saved

    def submit_actual_selling_prices(self, so_id: str, prices: dict[str, float] | None = None) -> SaleOrder:
        with self._hold_sale_order(so_id) as existing:
            so = self.get_sale_order(so_id)
            ensure_transition(so_id, so.status, SOStatus.ACTUAL_SUBMITTED)
            self._apply_prices(so, prices or {}, "a_sp")
            missing = [i.sku_id for i in so.items if not _is_positive(i.a_sp)]
            if missing:
                raise ValidationError(
                    "Please fill all Actual Selling Prices before submitting",
                    {"so_id": so_id, "missing_skus": missing},
                )
            for item in so.items:
                if SOItemStatus.ACTUAL_SUBMITTED in SO_ITEM_TRANSITIONS[item.status]:
                    item.status = SOItemStatus.ACTUAL_SUBMITTED
            so.status = SOStatus.ACTUAL_SUBMITTED
            saved = self._save_sale_order(so, existing)
        log.info("so transition so_id=%s status=%s", so_id, saved.status.value)
        return saved

    def complete_sale_order(self, so_id: str) -> SaleOrder:
        with self._hold_sale_order(so_id) as existing:
            so = self.get_sale_order(so_id)
            ensure_transition(so_id, so.status, SOStatus.COMPLETED)
            so.status = SOStatus.COMPLETED
            # completion changes no quantity or price, so a settled PO does not block it
            saved = self._save_sale_order(so, existing, require_open_po=False)
        log.info("so transition so_id=%s status=%s", so_id, saved.status.value)
        return saved

    @staticmethod
    def _apply_prices(so: SaleOrder, prices: dict[str, float], field_name: str) -> None:
        for sku_id, price in prices.items():
            item = so.item(sku_id)
            if item is None:
                raise NotFoundError(f"SKU {sku_id} not found in SO {so.id}", {"so_id": so.id, "sku_id": sku_id})
            if not _is_positive(price):
                raise ValidationError(
                    f"{field_name.upper().replace('_', '-')} for SKU {sku_id} must be greater than 0",
                    {"sku_id": sku_id},
                )
            setattr(item, field_name, float(price))

    def _ensure_po_open(self, po_id: str) -> PurchaseOrder:
        po = self.get_purchase_order(po_id)
        if po.status in LOCKED_PO_STATUSES:
            raise InvalidStateError(
                f"Sale orders of PO {po_id} cannot change once it is {po.status.value}",
                {"po_id": po_id, "status": po.status.value},
            )
        return po

    def _save_sale_order(
        self,
        so: SaleOrder,
        existing: SaleOrder | None,
        opening: SOStatus = SOStatus.DRAFT,
        require_open_po: bool = True,
    ) -> SaleOrder:
        """Validate and store. Caller holds the locks of ``so.po_id`` and ``existing.po_id``."""
        self._validate_items(so)
        if existing is not None:
            if existing.status == SOStatus.COMPLETED:
                raise InvalidStateError(f"SO {so.id} is COMPLETED", {"so_id": so.id})
            so.created_at = existing.created_at
        self._check_progress(so, existing, opening)

        if so.po_id is not None:
            po = self._ensure_po_open(so.po_id) if require_open_po else self.get_purchase_order(so.po_id)
            others = [s for s in self.repo.list_sos_for_po(po.id) if s.id != so.id]
            for so_item in so.items:
                po_item = po.item(so_item.sku_id)
                if po_item is None:
                    raise NotFoundError(
                        f"SKU {so_item.sku_id} not found in PO {po.id}",
                        {"po_id": po.id, "sku_id": so_item.sku_id},
                    )
                if not so_item.is_closed:
                    continue
                closed = closed_qty_for_item(others, po.id, so_item.sku_id) + so_item.so_qty
                fallback = self.repo.get_fallback(po.id, so_item.sku_id)
                fallback_qty = fallback.fallback_qty if fallback is not None else 0
                if closed + fallback_qty > po_item.po_qty:
                    raise ValidationError(
                        f"Closed quantity {closed} plus fallback quantity {fallback_qty} exceeds "
                        f"PO quantity {po_item.po_qty} for SKU {so_item.sku_id}",
                        {
                            "sku_id": so_item.sku_id,
                            "closed_qty": closed,
                            "fallback_qty": fallback_qty,
                            "po_qty": po_item.po_qty,
                        },
                    )

        so.touch()
        self.repo.save_so(so)
        return so

    @staticmethod
    def _check_progress(so: SaleOrder, existing: SaleOrder | None, opening: SOStatus) -> None:
        """Order and item statuses only move forward; closed items keep their quantity and price."""
        if existing is None:
            if so.status != opening:
                raise InvalidStateError(
                    f"SO {so.id} must start as {opening.value}, not {so.status.value}",
                    {"so_id": so.id, "status": so.status.value},
                )
        elif so.status != existing.status:
            ensure_transition(so.id, existing.status, so.status)

        item_status = (
            SOItemStatus.ACTUAL_SUBMITTED if so.status in CLOSED_SO_STATUSES else SOItemStatus.EXPECTED_SUBMITTED
        )
        before = {i.sku_id: i for i in existing.items} if existing is not None else {}
        for item in so.items:
            if item.status != item_status:
                raise InvalidStateError(
                    f"SKU {item.sku_id} cannot be {item.status.value} while SO {so.id} is {so.status.value}",
                    {"so_id": so.id, "sku_id": item.sku_id, "status": item.status.value},
                )
            old = before.get(item.sku_id)
            if old is None:
                continue
            if item.status != old.status and item.status not in SO_ITEM_TRANSITIONS[old.status]:
                raise InvalidStateError(
                    f"SKU {item.sku_id} on SO {so.id} cannot move from {old.status.value} to {item.status.value}",
                    {"so_id": so.id, "sku_id": item.sku_id, "status": old.status.value},
                )
            if old.is_closed and (item.so_qty != old.so_qty or item.a_sp != old.a_sp):
                raise InvalidStateError(
                    f"SKU {item.sku_id} on SO {so.id} is closed; its quantity and A-SP are fixed",
                    {"so_id": so.id, "sku_id": item.sku_id},
                )

        kept = {i.sku_id for i in so.items}
        dropped = [sku_id for sku_id, old in before.items() if old.is_closed and sku_id not in kept]
        if dropped:
            raise InvalidStateError(
                f"Closed items cannot be removed from SO {so.id}",
                {"so_id": so.id, "skus": dropped},
            )

    @staticmethod
    def _validate_items(so: SaleOrder) -> None:
        if not so.items:
            raise ValidationError("A sale order needs at least one item", {"so_id": so.id})
        seen: set[str] = set()
        for item in so.items:
            if item.sku_id in seen:
                raise ValidationError(f"SKU {item.sku_id} listed twice", {"so_id": so.id, "sku_id": item.sku_id})
            seen.add(item.sku_id)
            if item.so_qty <= 0:
                raise ValidationError(
                    f"Quantity for SKU {item.sku_id} must be a positive integer",
                    {"so_id": so.id, "sku_id": item.sku_id},
                )
            if item.status == SOItemStatus.ACTUAL_SUBMITTED and not _is_positive(item.a_sp):
                raise ValidationError(
                    f"SKU {item.sku_id} is ACTUAL_SUBMITTED without a positive A-SP",
                    {"so_id": so.id, "sku_id": item.sku_id},
                )
