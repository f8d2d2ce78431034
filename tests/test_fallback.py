from __future__ import annotations

import unittest

from commission_flow.errors import InvalidStateError, NotFoundError, ValidationError
from commission_flow.fallback import FallbackRegistry
from commission_flow.models import FallbackEntry, POItem, POStatus, PurchaseOrder
from commission_flow.repository import InMemoryRepository
from commission_flow.workflow import OrderWorkflow


class FallbackRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryRepository()
        self.repo.save_po(
            PurchaseOrder(
                id="PO-1",
                vendor_id="VENDOR-1",
                items=[
                    POItem("SKU-1", "Pomo Bhuj SSSS", 500, labour_cost_per_box=50, transport_cost_per_box=30),
                    POItem("SKU-2", "Pomo Bhuj SSS", 300, labour_cost_per_box=50, transport_cost_per_box=30),
                ],
            )
        )
        self.workflow = OrderWorkflow(self.repo)
        self.registry = FallbackRegistry(self.repo)

    def test_submit_and_read_back(self) -> None:
        saved = self.registry.submit("PO-1", [FallbackEntry("SKU-1", 200, 700)])
        self.assertEqual(len(saved), 1)
        entry = self.registry.get("PO-1", "SKU-1")
        self.assertIsNotNone(entry)
        self.assertEqual(entry.fallback_qty, 200)
        self.assertEqual(entry.fallback_a_sp_per_box, 700.0)

    def test_resubmission_replaces_previous_entry(self) -> None:
        self.registry.submit("PO-1", [FallbackEntry("SKU-1", 200, 700)])
        self.registry.submit("PO-1", [FallbackEntry("SKU-1", 50, 650)])
        entries = self.registry.list_for_po("PO-1")
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].fallback_qty, 50)
        self.assertEqual(entries[0].fallback_a_sp_per_box, 650.0)

    def test_overflow_rejects_the_whole_batch(self) -> None:
        self.workflow.create_closed_sale_order("PO-1", "SKU-1", 300, 800)
        batch = [FallbackEntry("SKU-2", 300, 690), FallbackEntry("SKU-1", 201, 700)]
        with self.assertRaises(ValidationError) as ctx:
            self.registry.submit("PO-1", batch)
        self.assertEqual(ctx.exception.details["sku_id"], "SKU-1")
        self.assertEqual(ctx.exception.details["max_qty"], 200)
        self.assertEqual(self.registry.list_for_po("PO-1"), [])

    def test_bound_uses_closed_quantity_at_submission_time(self) -> None:
        self.registry.submit("PO-1", [FallbackEntry("SKU-1", 200, 700)])
        self.workflow.create_closed_sale_order("PO-1", "SKU-1", 300, 800)
        with self.assertRaises(ValidationError):
            self.registry.submit("PO-1", [FallbackEntry("SKU-1", 250, 700)])
        self.registry.submit("PO-1", [FallbackEntry("SKU-1", 150, 700)])
        self.assertEqual(self.registry.get("PO-1", "SKU-1").fallback_qty, 150)

    def test_price_must_be_positive(self) -> None:
        for price in (0, -10):
            with self.subTest(price=price):
                with self.assertRaises(ValidationError):
                    self.registry.submit("PO-1", [FallbackEntry("SKU-1", 100, price)])
        self.assertIsNone(self.registry.get("PO-1", "SKU-1"))

    def test_negative_quantity_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.registry.submit("PO-1", [FallbackEntry("SKU-1", -1, 700)])

    def test_duplicate_sku_in_batch_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.registry.submit("PO-1", [FallbackEntry("SKU-1", 100, 700), FallbackEntry("SKU-1", 50, 710)])

    def test_empty_batch_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.registry.submit("PO-1", [])

    def test_unknown_sku_and_po(self) -> None:
        with self.assertRaises(ValidationError):
            self.registry.submit("PO-1", [FallbackEntry("SKU-1", 10, 700), FallbackEntry("SKU-9", 10, 700)])
        self.assertIsNone(self.registry.get("PO-1", "SKU-1"))
        with self.assertRaises(NotFoundError):
            self.registry.submit("PO-404", [FallbackEntry("SKU-1", 10, 700)])

    def test_settled_po_rejects_fallbacks(self) -> None:
        po = self.repo.get_po("PO-1")
        po.status = POStatus.PATTY_GENERATED
        self.repo.save_po(po)
        with self.assertRaises(InvalidStateError):
            self.registry.submit("PO-1", [FallbackEntry("SKU-1", 10, 700)])


if __name__ == "__main__":
    unittest.main()
