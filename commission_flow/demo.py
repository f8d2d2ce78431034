"""Demo scenario for PO-001.

SKU-001 is sold in part through a sale order and the remainder is priced
with a fallback entry; the other demo SKUs are sold in full. Running it again
against the same store reuses what earlier runs stored.
"""

from __future__ import annotations

from typing import Any

from commission_flow.fallback import FallbackRegistry
from commission_flow.locks import PerKeyLock
from commission_flow.logging_utils import get_logger
from commission_flow.models import FallbackEntry
from commission_flow.reconciliation import ReconciliationEngine
from commission_flow.repository import DEMO_PO_ID, Repository, seed_demo_data
from commission_flow.workflow import LOCKED_PO_STATUSES, OrderWorkflow

log = get_logger(__name__)

# (sku_id, qty, a_sp)
DEMO_SALES = (
    ("SKU-001", 300, 800),
    ("SKU-002", 300, 760),
    ("SKU-003", 100, 1450),
)
DEMO_FALLBACK = FallbackEntry("SKU-001", 200, 700)


def run_demo_settlement(
    repo: Repository,
    skip_fallback: bool = False,
    locks: PerKeyLock | None = None,
) -> dict[str, Any]:
    locks = locks or PerKeyLock()
    po = seed_demo_data(repo)
    if po.status in LOCKED_PO_STATUSES:
        log.info("demo po already settled po_id=%s status=%s", po.id, po.status.value)
        return {
            "status": "already_settled",
            "message": f"{po.id} is already {po.status.value}",
            "po_id": po.id,
            "purchase_order": po.to_dict(),
        }

    if not repo.list_sos_for_po(DEMO_PO_ID):
        workflow = OrderWorkflow(repo, locks)
        for sku_id, qty, a_sp in DEMO_SALES:
            workflow.create_closed_sale_order(DEMO_PO_ID, sku_id, qty, a_sp)
    if not skip_fallback and repo.get_fallback(DEMO_PO_ID, DEMO_FALLBACK.sku_id) is None:
        FallbackRegistry(repo, locks).submit(DEMO_PO_ID, [DEMO_FALLBACK])

    return ReconciliationEngine(repo, locks).generate_settlement(DEMO_PO_ID).to_dict()
