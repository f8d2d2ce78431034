from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from commission_flow.config import Settings
from commission_flow.main import create_app
from commission_flow.repository import InMemoryRepository


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(create_app(repo=InMemoryRepository(), settings=Settings(storage="memory")))
        resp = self.client.post(
            "/api/v1/purchase-orders",
            json={
                "id": "PO-1",
                "vendor_id": "VENDOR-1",
                "items": [
                    {
                        "sku_id": "SKU-1",
                        "sku_name": "Pomo Bhuj SSSS",
                        "po_qty": 500,
                        "labour_cost_per_box": 50,
                        "transport_cost_per_box": 30,
                    }
                ],
            },
        )
        self.assertEqual(resp.status_code, 201)

    def test_health(self) -> None:
        self.assertTrue(self.client.get("/health").json()["ok"])
        self.assertTrue(self.client.get("/api/v1/health").json()["ok"])

    def test_conflict_then_fallback_then_success(self) -> None:
        resp = self.client.post("/api/v1/purchase-orders/PO-1/sale-orders", json={"sku_id": "SKU-1", "qty": 300, "a_sp": 800})
        self.assertEqual(resp.status_code, 201)

        resp = self.client.post("/api/v1/purchase-orders/PO-1/settlement")
        self.assertEqual(resp.status_code, 409)
        body = resp.json()
        self.assertEqual(body["status"], "conflict")
        self.assertEqual(body["unsolved"][0]["unsold_qty"], 200)
        self.assertEqual(body["allowed_actions"], ["create_or_link_so", "enter_fallback_prices"])

        resp = self.client.post(
            "/api/v1/purchase-orders/PO-1/fallback-prices",
            json={"entries": [{"sku_id": "SKU-1", "fallback_qty": 200, "fallback_a_sp_per_box": 700}]},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "success")
        self.assertEqual(self.client.get("/api/v1/purchase-orders/PO-1/fallback-prices").json()["count"], 1)

        resp = self.client.post("/api/v1/purchase-orders/PO-1/settlement")
        self.assertEqual(resp.status_code, 200)
        result = resp.json()["results"][0]
        self.assertEqual(result["weighted_avg"], 639.2)
        self.assertEqual([b["source"] for b in result["buckets"]], ["sale_order", "fallback"])

        po = self.client.get("/api/v1/purchase-orders/PO-1").json()
        self.assertEqual(po["status"], "PATTY_GENERATED")
        self.assertEqual(po["items"][0]["tentative_a_pp"], 639.2)

        resp = self.client.put("/api/v1/purchase-orders/PO-1/items/SKU-1/patty-price", json={"value": 640})
        self.assertEqual(resp.json()["purchase_order"]["items"][0]["actual_seller_patty_price"], 640.0)
        resp = self.client.post("/api/v1/purchase-orders/PO-1/finalize")
        self.assertEqual(resp.json()["purchase_order"]["status"], "FINALIZED")

    def test_fallback_overflow_is_a_validation_error(self) -> None:
        resp = self.client.post(
            "/api/v1/purchase-orders/PO-1/fallback-prices",
            json={"entries": [{"sku_id": "SKU-1", "fallback_qty": 501, "fallback_a_sp_per_box": 700}]},
        )
        self.assertEqual(resp.status_code, 422)
        body = resp.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["kind"], "validation")
        self.assertEqual(body["sku_id"], "SKU-1")

    def test_error_mapping(self) -> None:
        resp = self.client.post("/api/v1/purchase-orders/PO-404/settlement")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["kind"], "not_found")

        resp = self.client.post("/api/v1/purchase-orders/PO-1/finalize")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["kind"], "invalid_state")

    def test_expected_price_submission(self) -> None:
        resp = self.client.post("/api/v1/purchase-orders/PO-1/submit-expected")
        self.assertEqual(resp.status_code, 422)
        self.client.put("/api/v1/purchase-orders/PO-1/items/SKU-1/expected-price", json={"value": 640})
        resp = self.client.post("/api/v1/purchase-orders/PO-1/submit-expected")
        self.assertEqual(resp.json()["purchase_order"]["status"], "EXPECTED_SUBMITTED")

    def test_sale_order_lifecycle(self) -> None:
        resp = self.client.post(
            "/api/v1/sale-orders",
            json={"id": "SO-1", "po_id": "PO-1", "items": [{"sku_id": "SKU-1", "so_qty": 500}]},
        )
        self.assertEqual(resp.json()["sale_order"]["status"], "DRAFT")
        self.client.post("/api/v1/sale-orders/SO-1/submit-expected", json={"prices": {"SKU-1": 820}})
        resp = self.client.post("/api/v1/sale-orders/SO-1/submit-actual", json={"prices": {"SKU-1": 800}})
        self.assertEqual(resp.json()["sale_order"]["items"][0]["status"], "ACTUAL_SUBMITTED")

        self.assertEqual(self.client.get("/api/v1/purchase-orders/PO-1/sale-orders").json()["count"], 1)
        self.assertEqual(self.client.get("/api/v1/sale-orders").json()["count"], 1)
        self.assertEqual(self.client.post("/api/v1/purchase-orders/PO-1/settlement").status_code, 200)

        resp = self.client.post("/api/v1/sale-orders/SO-1/complete")
        self.assertEqual(resp.json()["sale_order"]["status"], "COMPLETED")

    def test_demo_seed_and_state(self) -> None:
        resp = self.client.post("/api/v1/demo/seed")
        self.assertEqual(resp.json()["purchase_order"]["id"], "PO-001")
        state = self.client.get("/api/v1/demo/state").json()
        self.assertEqual({po["id"] for po in state["purchase_orders"]}, {"PO-1", "PO-001"})

    def test_reseed_keeps_a_settled_demo_po(self) -> None:
        self.client.post("/api/v1/demo/seed")
        for sku_id, qty in (("SKU-001", 500), ("SKU-002", 300), ("SKU-003", 100)):
            resp = self.client.post(
                "/api/v1/purchase-orders/PO-001/sale-orders",
                json={"sku_id": sku_id, "qty": qty, "a_sp": 800},
            )
            self.assertEqual(resp.status_code, 201)
        self.assertEqual(self.client.post("/api/v1/purchase-orders/PO-001/settlement").status_code, 200)
        self.client.post("/api/v1/purchase-orders/PO-001/finalize")

        resp = self.client.post("/api/v1/demo/seed")
        po = resp.json()["purchase_order"]
        self.assertEqual(po["status"], "FINALIZED")
        self.assertEqual(po["items"][0]["actual_seller_patty_price"], 676.8)

    def test_sale_order_cannot_be_created_past_draft(self) -> None:
        resp = self.client.post(
            "/api/v1/sale-orders",
            json={
                "id": "SO-1",
                "po_id": "PO-1",
                "status": "COMPLETED",
                "items": [{"sku_id": "SKU-1", "so_qty": 10, "a_sp": 800, "status": "ACTUAL_SUBMITTED"}],
            },
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["kind"], "invalid_state")
        self.assertEqual(self.client.get("/api/v1/sale-orders").json()["count"], 0)


class AppStorageTests(unittest.TestCase):
    def test_sqlite_file_is_created_on_first_request(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "data" / "flow.db"
            client = TestClient(create_app(settings=Settings(db_path=db)))
            self.assertFalse(db.exists())

            self.assertEqual(client.get("/api/v1/purchase-orders").json()["count"], 0)
            self.assertTrue(db.exists())


if __name__ == "__main__":
    unittest.main()
