from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from commission_flow.coverage import resolve_po
from commission_flow.errors import NotFoundError
from commission_flow.locks import PerKeyLock
from commission_flow.logging_utils import get_logger
from commission_flow.models import POStatus, SettlementResult, UnsoldSKU
from commission_flow.repository import Repository
from commission_flow.settlement import NC_COMMISSION_PERCENT, weighted_average
from commission_flow.workflow import ensure_transition

log = get_logger(__name__)

CONFLICT_ACTIONS = ("create_or_link_so", "enter_fallback_prices")


@dataclass
class SettlementOutcome:
    status: str
    message: str
    po_id: str
    results: list[SettlementResult] = field(default_factory=list)
    unsold: list[UnsoldSKU] = field(default_factory=list)
    allowed_actions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_conflict(self) -> bool:
        return self.status == "conflict"

    def to_dict(self) -> dict[str, Any]:
        if self.is_conflict:
            return {
                "status": self.status,
                "message": self.message,
                "po_id": self.po_id,
                "unsolved": [u.to_dict() for u in self.unsold],
                "allowed_actions": list(self.allowed_actions),
            }
        return {
            "status": self.status,
            "message": self.message,
            "po_id": self.po_id,
            "results": [r.to_dict() for r in self.results],
            "warnings": list(self.warnings),
        }


class ReconciliationEngine:
    def __init__(
        self,
        repo: Repository,
        locks: PerKeyLock | None = None,
        commission_percent: float = NC_COMMISSION_PERCENT,
    ) -> None:
        self.repo = repo
        self.locks = locks or PerKeyLock()
        self.commission_percent = commission_percent

    def generate_settlement(self, po_id: str) -> SettlementOutcome:
        """Derive the tentative seller patty price for every item of a PO.

        Returns a conflict outcome, with nothing written, when any item still
        has quantity covered by neither a closed sale order nor a fallback
        entry. On success every item gets ``tentative_a_pp`` and
        ``actual_seller_patty_price`` and the PO moves to PATTY_GENERATED.
        """
        with self.locks.hold(po_id):
            po = self.repo.get_po(po_id)
            if po is None:
                raise NotFoundError(f"PO {po_id} not found", {"po_id": po_id})
            ensure_transition(po_id, po.status, POStatus.PATTY_GENERATED)

            log.info("settlement started po_id=%s items=%d", po_id, len(po.items))
            coverages = resolve_po(self.repo, po)

            unsold = [c.as_unsold() for c in coverages if c.unsold_qty > 0]
            if unsold:
                log.info(
                    "settlement blocked po_id=%s unsold=%s",
                    po_id,
                    ",".join(f"{u.sku_id}:{u.unsold_qty}" for u in unsold),
                )
                return SettlementOutcome(
                    status="conflict",
                    message="Unresolved SKU quantities detected",
                    po_id=po_id,
                    unsold=unsold,
                    allowed_actions=list(CONFLICT_ACTIONS),
                )

            results: list[SettlementResult] = []
            warnings: list[str] = []
            for item, coverage in zip(po.items, coverages):
                buckets = coverage.price_buckets(item, self.commission_percent)
                result = SettlementResult(
                    sku_id=item.sku_id,
                    sku_name=item.sku_name,
                    total_qty=sum(b.qty for b in buckets),
                    weighted_avg=weighted_average(buckets),
                    buckets=tuple(buckets),
                )
                for bucket in buckets:
                    if bucket.negative_margin:
                        log.warning(
                            "negative margin po_id=%s sku_id=%s source=%s price=%s settled=%s",
                            po_id,
                            item.sku_id,
                            bucket.source_id,
                            bucket.a_sp_per_box,
                            bucket.settled,
                        )
                        warnings.append(
                            f"SKU {item.sku_id}: {bucket.qty} boxes from {bucket.source_id} "
                            f"settle at {bucket.settled:.2f}, below zero after costs and commission"
                        )
                results.append(result)

            for item, result in zip(po.items, results):
                item.tentative_a_pp = result.weighted_avg
                item.actual_seller_patty_price = result.weighted_avg
            po.status = POStatus.PATTY_GENERATED
            po.touch()
            self.repo.save_po(po)

        log.info("settlement generated po_id=%s skus=%d warnings=%d", po_id, len(results), len(warnings))
        return SettlementOutcome(
            status="success",
            message="Tentative seller patty price generated",
            po_id=po_id,
            results=results,
            warnings=warnings,
        )
