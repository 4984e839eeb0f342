"""
Unit tests for quantile, probability and fold queries on WeightedHistogram.
"""

import unittest

from tiny_hist.algorithms.histogram import WeightedHistogram


def make_two_bin():
    return WeightedHistogram.from_values(
        [(2.0, 3.0), (6.0, 1.0)],
        bin_count=2,
        total_weight=4.0,
        min_value=2.0,
        max_value=6.0,
    )


class TestQuantiles(unittest.TestCase):
    """Test cases for quantile inversion."""

    def test_quantile(self):
        h = make_two_bin()

        self.assertEqual(h.quantile(0.0), 2.0)
        self.assertEqual(h.quantile(1.0), 6.0)
        # target weight 2 within bin 0 (weight 3): 2 + 2 * 2/3
        self.assertAlmostEqual(h.quantile(0.5), 2.0 + 2.0 * (2.0 / 3.0))
        # target 3.5: past bin 0, half of bin 1
        self.assertAlmostEqual(h.quantile(0.875), 5.0)
        self.assertEqual(h.query(0.5), h.quantile(0.5))

    def test_quantile_out_of_range(self):
        h = make_two_bin()
        with self.assertLogs("tiny_hist", level="WARNING"):
            self.assertEqual(h.quantile(-0.5), 2.0)
        with self.assertLogs("tiny_hist", level="WARNING"):
            self.assertEqual(h.quantile(1.5), 6.0)

    def test_quantile_monotonic(self):
        h = WeightedHistogram.from_values(
            [(float(v), float(v % 7 + 1)) for v in range(1, 60)], bin_count=12
        )
        qs = [i / 20 for i in range(21)]
        values = [h.quantile(q) for q in qs]
        self.assertEqual(values, sorted(values))
        self.assertEqual(values[0], h.min_value)
        self.assertEqual(values[-1], h.max_value)

    def test_quantile_point_and_empty(self):
        point = WeightedHistogram.from_values([(3.0, 2.0)], bin_count=4)
        self.assertEqual(point.quantile(0.3), 3.0)
        self.assertEqual(WeightedHistogram().quantile(0.3), 0.0)

    def test_quantile_range(self):
        h = make_two_bin()
        lo, hi = h.quantile_range(0.5, 0.875)
        self.assertAlmostEqual(lo, h.quantile(0.5))
        self.assertAlmostEqual(hi, 5.0)

        self.assertEqual(h.quantile_range(0.0, 1.0), (2.0, 6.0))

    def test_quantile_range_matches_quantile(self):
        h = WeightedHistogram.from_values(
            [(float(v), 1.0 + (v % 3)) for v in range(1, 40)], bin_count=8
        )
        for q_lo, q_hi in [(0.1, 0.9), (0.25, 0.75), (0.5, 0.5), (0.05, 0.06)]:
            lo, hi = h.quantile_range(q_lo, q_hi)
            self.assertAlmostEqual(lo, h.quantile(q_lo))
            self.assertAlmostEqual(hi, h.quantile(q_hi))

    def test_quantile_range_errors(self):
        h = make_two_bin()
        with self.assertLogs("tiny_hist", level="ERROR"):
            self.assertEqual(h.quantile_range(0.8, 0.2), (-1.0, -1.0))
        with self.assertLogs("tiny_hist", level="ERROR"):
            self.assertEqual(WeightedHistogram().quantile_range(0.1, 0.2), (-1.0, -1.0))

        point = WeightedHistogram.from_values([(3.0, 2.0)], bin_count=4)
        self.assertEqual(point.quantile_range(0.1, 0.9), (3.0, 3.0))


class TestProbabilities(unittest.TestCase):
    """Test cases for forward CDF queries."""

    def test_prob_less_than(self):
        h = make_two_bin()
        self.assertAlmostEqual(h.prob_less_than(4.0), 0.75)
        self.assertAlmostEqual(h.prob_less_than(100.0), 1.0)
        self.assertEqual(h.prob_less_than(1.0), 0.0)
        self.assertEqual(WeightedHistogram().prob_less_than(1.0), 0.0)

    def test_prob_between(self):
        h = make_two_bin()
        self.assertAlmostEqual(h.prob_between(3.0, 5.0), 0.5)
        self.assertAlmostEqual(h.prob_between(2.0, 6.0), 1.0)

    def test_est_prob_less_than(self):
        x = make_two_bin()
        y = WeightedHistogram.from_values([(3.0, 1.0), (5.0, 1.0)], bin_count=2)

        # impulses of y at 3.5 and 4.5
        expected = 0.5 * (2.25 / 4.0) + 0.5 * (3.25 / 4.0)
        self.assertAlmostEqual(x.est_prob_less_than(y), expected)

    def test_est_prob_less_than_disjoint(self):
        x = make_two_bin()
        above = WeightedHistogram.from_values([(100.0, 1.0), (200.0, 1.0)], bin_count=2)
        below = WeightedHistogram.from_values([(1.0, 1.0)], bin_count=2)

        self.assertEqual(x.est_prob_less_than(above), 1.0)
        self.assertEqual(x.est_prob_less_than(below), 0.0)

    def test_est_prob_less_than_point(self):
        x = make_two_bin()
        y = WeightedHistogram.from_values([(4.0, 1.0)], bin_count=2)
        self.assertAlmostEqual(x.est_prob_less_than(y), 0.75)

    def test_est_prob_less_than_empty(self):
        with self.assertLogs("tiny_hist", level="ERROR"):
            self.assertEqual(make_two_bin().est_prob_less_than(WeightedHistogram()), 0.0)


class TestApply(unittest.TestCase):
    """Test cases for the range and quantile folds."""

    def test_apply_on_range_proportions(self):
        h = make_two_bin()
        proportion = lambda v, p: p

        self.assertAlmostEqual(h.apply_on_range(2.0, 6.0, proportion), 1.0)
        self.assertAlmostEqual(h.apply_on_range(2.0, 4.0, proportion), 0.75)
        self.assertAlmostEqual(h.apply_on_range(3.0, 5.0, proportion), 0.5)
        self.assertAlmostEqual(h.apply_on_range(2.5, 3.5, proportion), 0.375)
        self.assertEqual(h.apply_on_range(5.0, 3.0, proportion), 0.0)
        # clipped to the histogram range
        self.assertAlmostEqual(h.apply_on_range(0.0, 100.0, proportion), 1.0)

    def test_apply_on_range_values(self):
        h = make_two_bin()
        weighted_value = lambda v, p: v * p
        # bin centers 3 and 5 with proportions 0.75 and 0.25
        self.assertAlmostEqual(h.apply_on_range(2.0, 6.0, weighted_value), 3.5)

    def test_apply_on_quantile(self):
        h = make_two_bin()
        weighted_value = lambda v, p: v * p

        self.assertAlmostEqual(h.apply_on_quantile(0.0, 1.0, weighted_value), 3.5)
        self.assertAlmostEqual(
            h.apply_on_quantile(-1.0, 2.0, weighted_value),
            h.apply_on_quantile(0.0, 1.0, weighted_value),
        )
        self.assertEqual(h.apply_on_quantile(0.7, 0.2, weighted_value), 0.0)

    def test_apply_on_point(self):
        point = WeightedHistogram.from_values([(3.0, 2.0)], bin_count=4)
        proportion = lambda v, p: p

        self.assertEqual(point.apply_on_range(1.0, 5.0, proportion), 1.0)
        self.assertEqual(point.apply_on_range(4.0, 5.0, proportion), 0.0)
        # quantile windows weigh the point by their width
        self.assertAlmostEqual(point.apply_on_quantile(0.25, 0.75, proportion), 0.5)
        self.assertAlmostEqual(
            point.apply_on_quantile(0.0, 0.5, proportion)
            + point.apply_on_quantile(0.5, 1.0, proportion),
            1.0,
        )

    def test_apply_on_empty(self):
        self.assertEqual(WeightedHistogram().apply_on_range(0.0, 1.0, lambda v, p: 1.0), 0.0)
        self.assertEqual(
            WeightedHistogram().apply_on_quantile(0.0, 1.0, lambda v, p: 1.0), 0.0
        )


if __name__ == "__main__":
    unittest.main()
