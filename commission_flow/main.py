from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from commission_flow.config import Settings, get_settings
from commission_flow.errors import CommissionFlowError
from commission_flow.fallback import FallbackRegistry
from commission_flow.locks import PerKeyLock
from commission_flow.logging_utils import get_logger
from commission_flow.models import (
    FallbackEntry,
    POItem,
    SaleOrder,
    SOItem,
    SOItemStatus,
    SOStatus,
)
from commission_flow.persistence import SqliteRepository
from commission_flow.reconciliation import ReconciliationEngine
from commission_flow.repository import (
    DEMO_PO_ID,
    InMemoryRepository,
    Repository,
    seed_demo_data,
    storage_state,
)
from commission_flow.workflow import OrderWorkflow, new_id

log = get_logger(__name__)

ERROR_STATUS_CODES = {
    "not_found": 404,
    "invalid_state": 409,
    "validation": 422,
    "consistency": 500,
}


class POItemIn(BaseModel):
    sku_id: str
    sku_name: str | None = None
    po_qty: int
    labour_cost_per_box: float = 0.0
    transport_cost_per_box: float = 0.0
    e_pp: float | None = None


class CreatePurchaseOrderRequest(BaseModel):
    vendor_id: str
    items: list[POItemIn]
    id: str | None = None


class PriceRequest(BaseModel):
    value: float


class FallbackEntryIn(BaseModel):
    sku_id: str
    fallback_qty: int
    fallback_a_sp_per_box: float


class SubmitFallbackRequest(BaseModel):
    entries: list[FallbackEntryIn]


class SOItemIn(BaseModel):
    sku_id: str
    sku_name: str | None = None
    so_qty: int
    e_sp: float | None = None
    a_sp: float | None = None
    status: SOItemStatus = SOItemStatus.EXPECTED_SUBMITTED


class SaveSaleOrderRequest(BaseModel):
    items: list[SOItemIn]
    id: str | None = None
    po_id: str | None = None
    status: SOStatus = SOStatus.DRAFT


class CreateClosedSaleOrderRequest(BaseModel):
    sku_id: str
    qty: int
    a_sp: float


class SellingPricesRequest(BaseModel):
    prices: dict[str, float] = Field(default_factory=dict)


@dataclass
class Services:
    repo: Repository
    engine: ReconciliationEngine
    fallbacks: FallbackRegistry
    workflow: OrderWorkflow


def build_services(repo: Repository, settings: Settings) -> Services:
    # one lock table so settlement, fallback and order edits of a PO never interleave
    locks = PerKeyLock()
    return Services(
        repo=repo,
        engine=ReconciliationEngine(repo, locks, commission_percent=settings.commission_percent),
        fallbacks=FallbackRegistry(repo, locks),
        workflow=OrderWorkflow(repo, locks),
    )


def default_repository(settings: Settings) -> Repository:
    if settings.storage == "memory":
        return InMemoryRepository()
    return SqliteRepository(settings.db_path)


def create_app(repo: Repository | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    services = build_services(repo or default_repository(settings), settings)
    workflow = services.workflow

    app = FastAPI(title="Commission Flow", version="0.3.0")
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CommissionFlowError)
    async def handle_domain_error(request: Request, exc: CommissionFlowError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
        if status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            log.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(exc.to_dict(), status_code=status_code)

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"ok": True, "service": "commission-flow"})

    @app.get("/api/v1/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"ok": True})

    # -- purchase orders -------------------------------------------------

    @app.get("/api/v1/purchase-orders")
    def api_list_purchase_orders() -> JSONResponse:
        rows = [po.to_dict() for po in services.repo.list_pos()]
        return JSONResponse({"rows": rows, "count": len(rows)})

    @app.post("/api/v1/purchase-orders")
    def api_create_purchase_order(payload: CreatePurchaseOrderRequest) -> JSONResponse:
        items = [
            POItem(
                sku_id=i.sku_id.strip(),
                sku_name=(i.sku_name or i.sku_id).strip(),
                po_qty=i.po_qty,
                labour_cost_per_box=i.labour_cost_per_box,
                transport_cost_per_box=i.transport_cost_per_box,
                e_pp=i.e_pp,
            )
            for i in payload.items
        ]
        po = workflow.create_purchase_order(payload.vendor_id.strip(), items, po_id=payload.id)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()}, status_code=201)

    @app.get("/api/v1/purchase-orders/{po_id}")
    def api_get_purchase_order(po_id: str) -> JSONResponse:
        return JSONResponse(workflow.get_purchase_order(po_id).to_dict())

    @app.put("/api/v1/purchase-orders/{po_id}/items/{sku_id}/expected-price")
    def api_set_expected_price(po_id: str, sku_id: str, payload: PriceRequest) -> JSONResponse:
        po = workflow.set_expected_price(po_id, sku_id, payload.value)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()})

    @app.post("/api/v1/purchase-orders/{po_id}/submit-expected")
    def api_submit_expected_prices(po_id: str) -> JSONResponse:
        po = workflow.submit_expected_prices(po_id)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()})

    @app.post("/api/v1/purchase-orders/{po_id}/settlement")
    def api_generate_settlement(po_id: str) -> JSONResponse:
        outcome = services.engine.generate_settlement(po_id)
        return JSONResponse(outcome.to_dict(), status_code=409 if outcome.is_conflict else 200)

    @app.get("/api/v1/purchase-orders/{po_id}/fallback-prices")
    def api_list_fallback_prices(po_id: str) -> JSONResponse:
        entries = services.fallbacks.list_for_po(po_id)
        return JSONResponse({"entries": [e.to_dict() for e in entries], "count": len(entries)})

    @app.post("/api/v1/purchase-orders/{po_id}/fallback-prices")
    def api_submit_fallback_prices(po_id: str, payload: SubmitFallbackRequest) -> JSONResponse:
        entries = [
            FallbackEntry(
                sku_id=e.sku_id,
                fallback_qty=e.fallback_qty,
                fallback_a_sp_per_box=e.fallback_a_sp_per_box,
            )
            for e in payload.entries
        ]
        saved = services.fallbacks.submit(po_id, entries)
        return JSONResponse(
            {
                "status": "success",
                "message": "Fallback prices saved",
                "entries": [e.to_dict() for e in saved],
            }
        )

    @app.put("/api/v1/purchase-orders/{po_id}/items/{sku_id}/patty-price")
    def api_set_patty_price(po_id: str, sku_id: str, payload: PriceRequest) -> JSONResponse:
        po = workflow.set_actual_patty_price(po_id, sku_id, payload.value)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()})

    @app.post("/api/v1/purchase-orders/{po_id}/finalize")
    def api_finalize_purchase_order(po_id: str) -> JSONResponse:
        po = workflow.finalize_purchase_order(po_id)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()})

    @app.get("/api/v1/purchase-orders/{po_id}/sale-orders")
    def api_sale_orders_for_po(po_id: str) -> JSONResponse:
        workflow.get_purchase_order(po_id)
        rows = [so.to_dict() for so in services.repo.list_sos_for_po(po_id)]
        return JSONResponse({"rows": rows, "count": len(rows)})

    @app.post("/api/v1/purchase-orders/{po_id}/sale-orders")
    def api_create_closed_sale_order(po_id: str, payload: CreateClosedSaleOrderRequest) -> JSONResponse:
        so = workflow.create_closed_sale_order(po_id, payload.sku_id, payload.qty, payload.a_sp)
        return JSONResponse({"ok": True, "sale_order": so.to_dict()}, status_code=201)

    # -- sale orders -----------------------------------------------------

    @app.get("/api/v1/sale-orders")
    def api_list_sale_orders() -> JSONResponse:
        rows = [so.to_dict() for so in services.repo.list_sos()]
        return JSONResponse({"rows": rows, "count": len(rows)})

    @app.post("/api/v1/sale-orders")
    def api_save_sale_order(payload: SaveSaleOrderRequest) -> JSONResponse:
        so = SaleOrder(
            id=payload.id or new_id("SO"),
            po_id=payload.po_id,
            status=payload.status,
            items=[
                SOItem(
                    sku_id=i.sku_id,
                    sku_name=i.sku_name or i.sku_id,
                    so_qty=i.so_qty,
                    e_sp=i.e_sp,
                    a_sp=i.a_sp,
                    status=i.status,
                )
                for i in payload.items
            ],
        )
        saved = workflow.save_sale_order(so)
        return JSONResponse({"ok": True, "sale_order": saved.to_dict()})

    @app.get("/api/v1/sale-orders/{so_id}")
    def api_get_sale_order(so_id: str) -> JSONResponse:
        return JSONResponse(workflow.get_sale_order(so_id).to_dict())

    @app.post("/api/v1/sale-orders/{so_id}/submit-expected")
    def api_submit_expected_selling_prices(so_id: str, payload: SellingPricesRequest) -> JSONResponse:
        so = workflow.submit_expected_selling_prices(so_id, payload.prices)
        return JSONResponse({"ok": True, "sale_order": so.to_dict()})

    @app.post("/api/v1/sale-orders/{so_id}/submit-actual")
    def api_submit_actual_selling_prices(so_id: str, payload: SellingPricesRequest) -> JSONResponse:
        so = workflow.submit_actual_selling_prices(so_id, payload.prices)
        return JSONResponse({"ok": True, "sale_order": so.to_dict()})

    @app.post("/api/v1/sale-orders/{so_id}/complete")
    def api_complete_sale_order(so_id: str) -> JSONResponse:
        so = workflow.complete_sale_order(so_id)
        return JSONResponse({"ok": True, "sale_order": so.to_dict()})

    # -- demo ------------------------------------------------------------

    @app.post("/api/v1/demo/seed")
    def api_seed_demo() -> JSONResponse:
        with services.workflow.locks.hold(DEMO_PO_ID):
            po = seed_demo_data(services.repo)
        log.info("demo data seeded po_id=%s", po.id)
        return JSONResponse({"ok": True, "purchase_order": po.to_dict()})

    @app.get("/api/v1/demo/state")
    def api_demo_state() -> JSONResponse:
        return JSONResponse(storage_state(services.repo))

    return app


app = create_app()
