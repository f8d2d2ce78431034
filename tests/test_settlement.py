from __future__ import annotations

import unittest

from commission_flow.models import BucketSource, PriceBucket
from commission_flow.settlement import build_bucket, settle_unit_price, to_cents, weighted_average


def _bucket(qty: int, settled: float) -> PriceBucket:
    return PriceBucket(qty=qty, a_sp_per_box=0.0, settled=settled, source=BucketSource.SALE_ORDER, source_id="SO-X")


class SettleUnitPriceTests(unittest.TestCase):
    def test_deducts_costs_then_commission(self) -> None:
        # net 720, commission 43.2
        self.assertEqual(settle_unit_price(800, 50, 30), 676.8)
        self.assertEqual(settle_unit_price(700, 50, 30), 582.8)

    def test_same_inputs_give_same_output(self) -> None:
        first = settle_unit_price(812.37, 41.5, 27.25)
        second = settle_unit_price(812.37, 41.5, 27.25)
        self.assertEqual(first, second)

    def test_rounds_half_away_from_zero(self) -> None:
        # net 100.25 * 0.94 = 94.235 exactly
        self.assertEqual(settle_unit_price(180.25, 50, 30), 94.24)
        self.assertEqual(settle_unit_price(0, 100.25, 0), -94.24)
        self.assertEqual(to_cents(2.675), 2.68)

    def test_price_below_costs_is_not_clamped(self) -> None:
        self.assertEqual(settle_unit_price(50, 50, 30), -28.2)

    def test_commission_percent_is_configurable(self) -> None:
        self.assertEqual(settle_unit_price(800, 50, 30, commission_percent=0), 720.0)
        self.assertEqual(settle_unit_price(800, 50, 30, commission_percent=10), 648.0)

    def test_build_bucket_keeps_provenance(self) -> None:
        bucket = build_bucket(200, 700, 50, 30, BucketSource.FALLBACK, "fallback")
        self.assertEqual(bucket.qty, 200)
        self.assertEqual(bucket.a_sp_per_box, 700.0)
        self.assertEqual(bucket.settled, 582.8)
        self.assertEqual(bucket.source, BucketSource.FALLBACK)
        self.assertFalse(bucket.negative_margin)


class WeightedAverageTests(unittest.TestCase):
    def test_empty_bucket_list_is_zero(self) -> None:
        self.assertEqual(weighted_average([]), 0.0)

    def test_zero_total_quantity_is_zero(self) -> None:
        self.assertEqual(weighted_average([_bucket(0, 500.0)]), 0.0)

    def test_single_bucket_is_its_price(self) -> None:
        self.assertEqual(weighted_average([_bucket(500, 676.8)]), 676.8)

    def test_mixed_sale_and_fallback_buckets(self) -> None:
        self.assertEqual(weighted_average([_bucket(300, 676.8), _bucket(200, 582.8)]), 639.2)

    def test_average_stays_within_bucket_prices(self) -> None:
        cases = [
            [_bucket(1, 10.01), _bucket(2, 10.02), _bucket(3, 10.03)],
            [_bucket(7, -15.5), _bucket(13, 99.99)],
            [_bucket(333, 123.45), _bucket(1, 0.01), _bucket(999, 456.78)],
        ]
        for buckets in cases:
            with self.subTest(buckets=buckets):
                avg = weighted_average(buckets)
                self.assertGreaterEqual(avg, min(b.settled for b in buckets))
                self.assertLessEqual(avg, max(b.settled for b in buckets))


if __name__ == "__main__":
    unittest.main()
