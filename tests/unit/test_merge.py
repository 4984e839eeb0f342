"""
Unit tests for combining histograms onto a shared grid.
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


def zero_histogram(total_weight=0.0):
    h = WeightedHistogram()
    h.add_to_list(0.0, total_weight)
    h.build_from_list(bin_count=2, total_weight=total_weight)
    return h


class TestFromHistograms(unittest.TestCase):
    """Test cases for WeightedHistogram.from_histograms."""

    def test_empty_list(self):
        h = WeightedHistogram.from_histograms(4, 0.0, [])
        self.assertTrue(h.is_point())
        self.assertFalse(h.non_zero())

    def test_single_element_is_copied(self):
        """A one-element list reproduces the element exactly."""
        src = make_two_bin()
        h = WeightedHistogram.from_histograms(8, 100.0, [src])

        self.assertIsNot(h, src)
        self.assertEqual(h.stats, src.stats)
        self.assertEqual((h.min_value, h.max_value), (src.min_value, src.max_value))
        self.assertEqual(h.bins, src.bins)
        self.assertEqual(h.bin_count, src.bin_count)

    def test_zero_histogram_contributes_nothing(self):
        """A zero histogram leaves the other histogram's stats and range unchanged."""
        src = make_two_bin()
        h = WeightedHistogram.from_histograms(
            src.bin_count, src.total_weight(), [zero_histogram(), src]
        )

        self.assertEqual(h.stats, src.stats)
        self.assertEqual((h.min_value, h.max_value), (src.min_value, src.max_value))
        for got, want in zip(h.bins, src.bins):
            self.assertAlmostEqual(got, want)

    def test_caller_list_is_not_modified(self):
        src = make_two_bin()
        sources = [None, zero_histogram(), src, src.copy()]
        WeightedHistogram.from_histograms(2, 8.0, sources)

        self.assertEqual(len(sources), 4)
        self.assertIsNone(sources[0])
        self.assertIs(sources[2], src)

    def test_rebinning_different_grids(self):
        """Histograms with different ranges merge by weight, not bin index."""
        a = WeightedHistogram.from_values([(2.0, 1.0), (4.0, 1.0)], bin_count=2)
        b = WeightedHistogram.from_values([(4.0, 1.0), (6.0, 1.0)], bin_count=2)
        h = WeightedHistogram.from_histograms(4, 4.0, [a, b])

        self.assertEqual(h.min_value, 2.0)
        self.assertEqual(h.max_value, 6.0)
        self.assertEqual(h.bin_count, 4)
        for got in h.bins:
            self.assertAlmostEqual(got, 1.0)

        # values 2, 4, 4, 6
        self.assertAlmostEqual(h.mean(), 4.0)
        self.assertAlmostEqual(h.stats.sum_of_squares, 8.0)
        self.assertAlmostEqual(sum(h.bins), h.non_zero_weight())

    def test_rebinning_preserves_weight(self):
        sources = [
            WeightedHistogram.from_values(
                [(float(v) * k, 1.0 + v % 3) for v in range(1, 30)], bin_count=7 + k
            )
            for k in range(1, 5)
        ]
        nzw = sum(s.non_zero_weight() for s in sources)
        h = WeightedHistogram.from_histograms(16, nzw, sources)

        self.assertAlmostEqual(sum(h.bins), nzw, delta=1e-9)
        self.assertAlmostEqual(h.non_zero_weight(), nzw)
        self.assertEqual(h.min_value, min(s.min_value for s in sources))
        self.assertEqual(h.max_value, max(s.max_value for s in sources))

    def test_weight_shortfall_becomes_zero_weight(self):
        a = make_two_bin()
        b = make_two_bin()
        h = WeightedHistogram.from_histograms(2, 14.0, [a, b])

        self.assertAlmostEqual(h.non_zero_weight(), 8.0)
        self.assertAlmostEqual(h.total_weight(), 14.0)
        self.assertAlmostEqual(h.zero_weight(), 6.0)
        self.assertEqual(list(h.bins), [6.0, 2.0])

    def test_zero_mass_is_not_counted_twice(self):
        a = WeightedHistogram.from_values([(2.0, 1.0), (4.0, 1.0), (0.0, 3.0)], bin_count=2)
        h = WeightedHistogram.from_histograms(2, 10.0, [a, a.copy()])
        self.assertAlmostEqual(h.total_weight(), 10.0)
        self.assertAlmostEqual(h.zero_weight(), 6.0)

    def test_all_zero_sources(self):
        h = WeightedHistogram.from_histograms(
            4, 5.0, [zero_histogram(2.0), zero_histogram(3.0)]
        )
        self.assertFalse(h.non_zero())
        self.assertEqual(h.total_weight(), 5.0)

    def test_point_sources(self):
        a = WeightedHistogram.from_values([(3.0, 1.0)], bin_count=2)
        b = WeightedHistogram.from_values([(5.0, 1.0)], bin_count=2)
        h = WeightedHistogram.from_histograms(2, 2.0, [a, b])

        self.assertEqual((h.min_value, h.max_value), (3.0, 5.0))
        self.assertEqual(list(h.bins), [1.0, 1.0])

        same = WeightedHistogram.from_histograms(2, 2.0, [a, a.copy()])
        self.assertTrue(same.is_point())
        self.assertEqual(same.non_zero_weight(), 2.0)

    def test_zero_lower_bound_is_reported(self):
        suspicious = make_two_bin()
        suspicious._min = 0.0
        with self.assertLogs("tiny_hist", level="WARNING"):
            WeightedHistogram.from_histograms(2, 8.0, [suspicious, make_two_bin()])


class TestMerge(unittest.TestCase):
    """Test cases for the summary-interface merge."""

    def test_merge(self):
        a = make_two_bin()
        b = make_two_bin()
        merged = a.merge(b)

        self.assertEqual(merged.bin_count, 2)
        self.assertEqual(list(merged.bins), [6.0, 2.0])
        self.assertAlmostEqual(merged.total_weight(), 8.0)
        self.assertEqual(merged.items_processed, 4)
        # operands untouched
        self.assertEqual(list(a.bins), [3.0, 1.0])

    def test_merge_type_check(self):
        with self.assertRaises(TypeError):
            make_two_bin().merge("not a histogram")


if __name__ == "__main__":
    unittest.main()
