from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


class POStatus(str, Enum):
    DRAFT = "DRAFT"
    EXPECTED_SUBMITTED = "EXPECTED_SUBMITTED"
    PATTY_GENERATED = "PATTY_GENERATED"
    FINALIZED = "FINALIZED"


class SOStatus(str, Enum):
    DRAFT = "DRAFT"
    EXPECTED_SUBMITTED = "EXPECTED_SUBMITTED"
    ACTUAL_SUBMITTED = "ACTUAL_SUBMITTED"
    COMPLETED = "COMPLETED"


class SOItemStatus(str, Enum):
    EXPECTED_SUBMITTED = "EXPECTED_SUBMITTED"
    ACTUAL_SUBMITTED = "ACTUAL_SUBMITTED"


class BucketSource(str, Enum):
    SALE_ORDER = "sale_order"
    FALLBACK = "fallback"


@dataclass
class POItem:
    sku_id: str
    sku_name: str
    po_qty: int
    labour_cost_per_box: float = 0.0
    transport_cost_per_box: float = 0.0
    e_pp: float | None = None
    tentative_a_pp: float | None = None
    actual_seller_patty_price: float | None = None

    @property
    def unit_costs(self) -> float:
        return self.labour_cost_per_box + self.transport_cost_per_box

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> POItem:
        return cls(
            sku_id=str(data["sku_id"]),
            sku_name=str(data.get("sku_name") or data["sku_id"]),
            po_qty=int(data["po_qty"]),
            labour_cost_per_box=float(data.get("labour_cost_per_box") or 0.0),
            transport_cost_per_box=float(data.get("transport_cost_per_box") or 0.0),
            e_pp=_opt_float(data.get("e_pp")),
            tentative_a_pp=_opt_float(data.get("tentative_a_pp")),
            actual_seller_patty_price=_opt_float(data.get("actual_seller_patty_price")),
        )


@dataclass
class PurchaseOrder:
    id: str
    vendor_id: str
    items: list[POItem]
    status: POStatus = POStatus.DRAFT
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def item(self, sku_id: str) -> POItem | None:
        return next((i for i in self.items if i.sku_id == sku_id), None)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "items": [i.to_dict() for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseOrder:
        return cls(
            id=str(data["id"]),
            vendor_id=str(data["vendor_id"]),
            items=[POItem.from_dict(i) for i in data.get("items", [])],
            status=POStatus(data.get("status", POStatus.DRAFT.value)),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class SOItem:
    sku_id: str
    sku_name: str
    so_qty: int
    e_sp: float | None = None
    a_sp: float | None = None
    status: SOItemStatus = SOItemStatus.EXPECTED_SUBMITTED

    @property
    def is_closed(self) -> bool:
        return self.a_sp is not None and self.status == SOItemStatus.ACTUAL_SUBMITTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "sku_name": self.sku_name,
            "so_qty": self.so_qty,
            "e_sp": self.e_sp,
            "a_sp": self.a_sp,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SOItem:
        return cls(
            sku_id=str(data["sku_id"]),
            sku_name=str(data.get("sku_name") or data["sku_id"]),
            so_qty=int(data["so_qty"]),
            e_sp=_opt_float(data.get("e_sp")),
            a_sp=_opt_float(data.get("a_sp")),
            status=SOItemStatus(data.get("status", SOItemStatus.EXPECTED_SUBMITTED.value)),
        )


@dataclass
class SaleOrder:
    id: str
    items: list[SOItem]
    po_id: str | None = None
    status: SOStatus = SOStatus.DRAFT
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def item(self, sku_id: str) -> SOItem | None:
        return next((i for i in self.items if i.sku_id == sku_id), None)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "po_id": self.po_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "items": [i.to_dict() for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SaleOrder:
        return cls(
            id=str(data["id"]),
            po_id=data.get("po_id"),
            items=[SOItem.from_dict(i) for i in data.get("items", [])],
            status=SOStatus(data.get("status", SOStatus.DRAFT.value)),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class FallbackEntry:
    sku_id: str
    fallback_qty: int
    fallback_a_sp_per_box: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FallbackEntry:
        return cls(
            sku_id=str(data["sku_id"]),
            fallback_qty=int(data["fallback_qty"]),
            fallback_a_sp_per_box=float(data["fallback_a_sp_per_box"]),
        )


@dataclass(frozen=True)
class PriceBucket:
    qty: int
    a_sp_per_box: float
    settled: float
    source: BucketSource
    source_id: str

    @property
    def negative_margin(self) -> bool:
        return self.settled < 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "qty": self.qty,
            "a_sp_per_box": self.a_sp_per_box,
            "settled": self.settled,
            "source": self.source.value,
            "source_id": self.source_id,
            "negative_margin": self.negative_margin,
        }


@dataclass(frozen=True)
class SettlementResult:
    sku_id: str
    sku_name: str
    total_qty: int
    weighted_avg: float
    buckets: tuple[PriceBucket, ...]

    @property
    def negative_margin(self) -> bool:
        return self.weighted_avg < 0 or any(b.negative_margin for b in self.buckets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "sku_name": self.sku_name,
            "total_qty": self.total_qty,
            "weighted_avg": self.weighted_avg,
            "negative_margin": self.negative_margin,
            "buckets": [b.to_dict() for b in self.buckets],
        }


@dataclass(frozen=True)
class UnsoldSKU:
    sku_id: str
    sku_name: str
    po_qty: int
    closed_qty: int
    unsold_qty: int
    fallback_qty: int = 0

    @property
    def covered_qty(self) -> int:
        return self.closed_qty + self.fallback_qty

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "covered_qty": self.covered_qty}


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)
