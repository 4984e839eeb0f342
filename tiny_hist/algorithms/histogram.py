"""
Weighted histogram implementation for tiny-hist.

This module provides a fixed-grid weighted histogram used to represent,
merge, compare and persist approximate probability distributions gathered
while profiling a program (execution counts, path weights, timing samples).

A histogram covers the inclusive value range [min, max] with bin_count
equal-width bins. All values are non-negative. Samples whose value is 0 are
not binned: their weight is only carried in the statistics as "zero weight".
A histogram with no nonzero-valued weight, or whose range collapses to a
single value, is a *point*: it has no bin array and all its weight sits at
min.

Histograms are built in two steps. Weighted values are first staged in an
add-list (add_to_list / update) and then committed with build_from_list.
Histograms collected independently are combined with from_histograms, which
re-bins every source onto one shared grid by weight-proportional
redistribution rather than by bin-index alignment.

Inconsistent data never raises: problems are logged on the ``tiny_hist``
loggers and the offending call returns a defined sentinel.
"""

import array
import io
import logging
import math
import sys
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Tuple

from tiny_hist.algorithms.stats import Stats, WeightedValue
from tiny_hist.core.base import DistributionSummary
from tiny_hist.core.constants import (
    DEFAULT_BIN_COUNT,
    FP_FUDGE_EPS,
    WEIGHT_CHECK_EPS,
)
from tiny_hist.core.records import (
    BinRecord,
    RecordHeader,
    read_bin,
    read_header,
    write_bin,
    write_header,
)

logger = logging.getLogger(__name__)

# (value, proportion of nonzero weight) -> contribution
HistogramFunc = Callable[[float, float], float]


def _snap(x: float) -> float:
    """Round values below the tolerance to exactly 0."""
    return 0.0 if x < FP_FUDGE_EPS else x


def _weights_disagree(a: float, b: float) -> bool:
    return not math.isclose(a, b, rel_tol=FP_FUDGE_EPS, abs_tol=WEIGHT_CHECK_EPS)


class WeightedHistogram(DistributionSummary[float, float]):
    """
    Fixed-grid histogram of weighted, non-negative values.

    The histogram keeps sufficient statistics (Stats) of everything it was
    built from, so mean and standard deviation are exact while quantiles
    and range probabilities are interpolated from the bins.

    Example:
        >>> h = WeightedHistogram()
        >>> h.add_to_list(2.0, 3.0)
        >>> h.add_to_list(6.0, 1.0)
        >>> h.build_from_list(bin_count=2, total_weight=4.0, min_value=2.0, max_value=6.0)
        >>> list(h.bins)
        [3.0, 1.0]
    """

    DEFAULT_BIN_COUNT: int = DEFAULT_BIN_COUNT

    def __init__(self) -> None:
        """Create an empty point histogram at 0."""
        super().__init__()
        self._stats = Stats()
        self._min = 0.0
        self._max = 0.0
        self._bin_count = 0
        self._bins: Optional[array.array] = None
        self._add_list: List[WeightedValue] = []

    # ------------------------------------------------------------------
    # Diagnostics helpers

    def _warn(self, msg: str, *args: Any) -> None:
        logger.warning("(#%d) " + msg, self._id, *args)

    def _error(self, msg: str, *args: Any) -> None:
        logger.error("(#%d) " + msg, self._id, *args)

    # ------------------------------------------------------------------
    # Factories

    @classmethod
    def from_values(
        cls,
        values: Iterable[Tuple[float, float]],
        bin_count: int = DEFAULT_BIN_COUNT,
        total_weight: Optional[float] = None,
        min_value: float = math.inf,
        max_value: float = 0.0,
    ) -> "WeightedHistogram":
        """
        Stage the given (value, weight) pairs and build a histogram.

        Args:
            values: (value, weight) pairs.
            bin_count: Number of bins of the result.
            total_weight: Total observed weight. Defaults to the sum of the
                          given weights; anything above the nonzero-valued
                          weight is recorded as zero weight.
            min_value: Lower seed of the range (may only widen).
            max_value: Upper seed of the range (may only widen).

        Returns:
            A new histogram.
        """
        hist = cls()
        for value, weight in values:
            hist.update(value, weight)
        if total_weight is None:
            total_weight = sum(wv.weight for wv in hist._add_list)
        hist.build_from_list(bin_count, total_weight, min_value, max_value)
        return hist

    @classmethod
    def from_histograms(
        cls,
        bin_count: int,
        total_weight: float,
        histograms: Iterable[Optional["WeightedHistogram"]],
    ) -> "WeightedHistogram":
        """
        Combine several finalized histograms into one on a shared grid.

        The result covers the union of the source ranges with bin_count
        bins. The weight of every target bin is the sum, over the sources,
        of the source weight falling within that bin's range, so sources
        with different bin counts and ranges merge correctly.

        None entries and sources without nonzero weight are ignored; the
        zero weight they stand for is restored from total_weight. The
        given sequence is not modified.

        Args:
            bin_count: Number of bins of the result.
            total_weight: Total observed weight across all sources.
            histograms: The sources.

        Returns:
            A new histogram.
        """
        result = cls()
        hl = list(histograms)

        if not hl:
            return result

        if len(hl) == 1:
            if hl[0] is None:
                return result
            return hl[0].copy()

        sources = []
        for hist in hl:
            if hist is None or not hist.non_zero():
                continue
            if hist._min == 0:
                logger.warning(
                    "(#%d) non-zero histogram in merge list has 0 lower bound "
                    "(max=%r, w=%r)",
                    hist.id,
                    hist._max,
                    hist.non_zero_weight(),
                )
            sources.append(hist)

        if not sources:
            logger.debug("(#%d) merge list empty after sanitizing", result.id)
            result._stats.total_weight = total_weight
            return result

        lo = math.inf
        hi = 0.0
        range_update = False
        for hist in sources:
            result._stats.combine(hist._stats)
            if hist._min < lo:
                lo = hist._min
                range_update = True
            if hist._max > hi:
                hi = hist._max
                range_update = True

        # zero histograms dropped above, and zero weight missing from the sources
        if result._stats.total_weight < total_weight:
            result._stats.combine(
                Stats(total_weight=total_weight - result._stats.total_weight)
            )

        if not range_update:
            result._warn("non-empty merge list did not update range")
            lo = hi = 0.0

        result.set_range(lo, hi)

        if result.is_point():
            result.set_bin_count(0)
            return result

        result.set_bin_count(result._checked_bin_count(bin_count))
        for hist in sources:
            if hist.is_point():
                result.add_to_bin(result.which_bin(hist._min), hist.non_zero_weight())
                continue
            for i in range(result._bin_count):
                w = hist.range_weight(result.bin_lower(i), result.bin_upper(i))
                if w:
                    result.add_to_bin(i, w)
        return result

    def copy(self) -> "WeightedHistogram":
        """Return an independent copy. Pending add-list values are not copied."""
        other = type(self)()
        other._stats = self._stats.copy()
        other._min = self._min
        other._max = self._max
        other.set_bin_count(self._bin_count)
        if self._bins is not None and other._bins is not None:
            other._bins[:] = self._bins
        return other

    # ------------------------------------------------------------------
    # Storage and range model

    def set_range(self, min_value: float, max_value: float) -> None:
        """
        Set the value range, reversing it if needed and clamping it at 0.
        """
        if min_value > max_value:
            self._warn(
                "set_range: minimum > maximum, reversing (%r > %r)",
                min_value,
                max_value,
            )
            min_value, max_value = max_value, min_value

        # histogram range is strictly non-negative
        if min_value < 0:
            min_value = 0.0
        if max_value < 0:
            max_value = 0.0

        if min_value == 0 and max_value != 0:
            self._warn("setting lower bound to 0 (max=%r)", max_value)

        self._min = float(min_value)
        self._max = float(max_value)

    def set_bin_count(self, n: int) -> None:
        """
        Allocate a fresh, zeroed bin array of n bins (none for n == 0).

        Raises:
            ValueError: If n is negative.
        """
        if n < 0:
            raise ValueError(f"Bin count must be non-negative, got {n}")
        self._bin_count = int(n)
        self._bins = array.array("d", bytes(8 * n)) if n > 0 else None

    def _checked_bin_count(self, bin_count: int) -> int:
        if bin_count <= 0:
            self._error(
                "histogram with data requested with %d bins; using %d",
                bin_count,
                self.DEFAULT_BIN_COUNT,
            )
            return self.DEFAULT_BIN_COUNT
        return bin_count

    def non_zero(self) -> bool:
        """True if the histogram holds meaningful nonzero-valued weight."""
        return self._stats.sum_of_weights > FP_FUDGE_EPS

    def is_point(self) -> bool:
        """True for empty histograms and histograms with a zero-width range."""
        if not self.non_zero():
            return True
        return self._min == self._max

    @property
    def stats(self) -> Stats:
        """The histogram's sufficient statistics."""
        return self._stats

    @property
    def bin_count(self) -> int:
        return self._bin_count

    @property
    def bins(self) -> Tuple[float, ...]:
        """Bin weights (empty for points)."""
        if self._bins is None:
            return ()
        return tuple(self._bins)

    @property
    def min_value(self) -> float:
        """Lower bound of the range (0 for an empty histogram)."""
        if not self.non_zero():
            return 0.0
        return self._min

    @property
    def max_value(self) -> float:
        """Upper bound of the range (0 for an empty histogram)."""
        if not self.non_zero():
            return 0.0
        return self._max

    def bin_width(self) -> float:
        if self.is_point() or self._bin_count == 0:
            return 0.0
        return (self._max - self._min) / self._bin_count

    def bin_lower(self, b: int) -> float:
        if not self.non_zero():
            return 0.0
        return self._min + self.bin_width() * b

    def bin_upper(self, b: int) -> float:
        if not self.non_zero():
            return 0.0
        return self._min + self.bin_width() * (b + 1)

    def bin_center(self, b: int) -> float:
        if not self.non_zero():
            return 0.0
        return self._min + self.bin_width() * (b + 0.5)

    def which_bin(self, value: float) -> int:
        """
        Index of the bin holding value, clamped to the valid bins.

        Values outside the range by more than the tolerance are reported.
        Points always answer bin 0.
        """
        if not self.non_zero():
            self._error("which_bin: empty histograms don't have bins")
            return 0

        if self.is_point():
            if value != self._min:
                self._warn(
                    "value %r is not at point distribution %r", value, self._min
                )
            return 0

        width = self.bin_width()
        if width <= 0:
            return 0

        b = math.floor((value - self._min) / width)
        if b < 0:
            b = 0
            if value - self._min < -FP_FUDGE_EPS:
                self._warn(
                    "value %r below range [%r, %r]", value, self._min, self._max
                )
        elif b >= self._bin_count:
            b = self._bin_count - 1
            if value - self._max > FP_FUDGE_EPS:
                self._warn(
                    "value %r above range [%r, %r]", value, self._min, self._max
                )
        return int(b)

    def bin_weight(self, b: int) -> float:
        """Weight of bin b; 0 for histograms without bins."""
        if self._bins is None:
            return 0.0
        return self._bins[b]

    def set_bin_weight(self, b: int, weight: float) -> None:
        if self.is_point() or self._bins is None:
            self._warn("setting bin weight on point histogram (ignored)")
            return
        if not 0 <= b < self._bin_count:
            self._error("[%d]: bin out of range", b)
            return
        self._bins[b] = weight

    def add_to_bin(self, b: int, weight: float) -> float:
        """
        Add weight to bin b.

        Returns:
            The new weight of the bin (0 when the write was ignored).
        """
        if self.is_point() or self._bins is None:
            self._warn("adding bin weight on point histogram (ignored)")
            return 0.0
        if not 0 <= b < self._bin_count:
            self._error("[%d]: bin out of range", b)
            return 0.0
        self._bins[b] += weight
        return self._bins[b]

    def bins_used(self) -> int:
        """Number of bins holding more than the tolerance."""
        if self._bins is None:
            return 0
        return sum(1 for w in self._bins if w > FP_FUDGE_EPS)

    def range_weight(self, lower: float, upper: float) -> float:
        """
        Weight within [lower, upper].

        Bins only partially covered by the query contribute in proportion
        to the overlap. Query bounds within the tolerance of a bin boundary
        are snapped to it, so walking adjoining ranges piecewise neither
        duplicates nor misses weight.
        """
        if not self.non_zero():
            self._error("range_weight: empty histograms don't have weight")
            return 0.0

        if lower > upper:
            return 0.0
        if upper - lower < FP_FUDGE_EPS:
            return 0.0

        if self.is_point():
            if lower <= self._min and upper >= self._max:
                return self.non_zero_weight()
            return 0.0

        if self._bins is None:
            return 0.0
        bins = self._bins

        if upper <= self._min or lower >= self._max:
            return 0.0

        lower = max(lower, self._min)
        upper = min(upper, self._max)

        width = self.bin_width()
        lb_bin = self.which_bin(lower)
        ub_bin = self.which_bin(upper)

        ub_is_boundary = False
        lb_is_boundary = False

        # snap up to the top of the upper bin, or down to its bottom
        boundary = self.bin_upper(ub_bin)
        if upper > boundary - FP_FUDGE_EPS:
            ub_is_boundary = True
            upper = boundary
        else:
            boundary = self.bin_lower(ub_bin)
            if upper < boundary + FP_FUDGE_EPS:
                if ub_bin == 0:
                    return 0.0
                ub_bin -= 1
                upper = boundary
                ub_is_boundary = True

        # snap down to the bottom of the lower bin, or up to its top
        boundary = self.bin_lower(lb_bin)
        if lower < boundary + FP_FUDGE_EPS:
            lb_is_boundary = True
            lower = boundary
        else:
            boundary = self.bin_upper(lb_bin)
            if lower > boundary - FP_FUDGE_EPS:
                if lb_bin >= self._bin_count - 1:
                    return 0.0
                lb_bin += 1
                lower = boundary
                lb_is_boundary = True

        # Subtracting nearly equal floats can go slightly negative; clamp.
        if lb_bin == ub_bin:
            if lb_is_boundary and ub_is_boundary:
                return bins[lb_bin]
            return max(0.0, (upper - lower) / width * bins[lb_bin])

        if lb_bin > ub_bin:
            return 0.0

        weight = 0.0
        if lb_is_boundary:
            w = bins[lb_bin]
        else:
            w = (self.bin_upper(lb_bin) - lower) / width * bins[lb_bin]
        weight += max(0.0, w)

        if ub_is_boundary:
            w = bins[ub_bin]
        else:
            w = (upper - self.bin_lower(ub_bin)) / width * bins[ub_bin]
        weight += max(0.0, w)

        for i in range(lb_bin + 1, ub_bin):
            weight += bins[i]

        return weight

    # ------------------------------------------------------------------
    # Weights and moments

    def total_weight(self) -> float:
        if self._stats.total_weight < FP_FUDGE_EPS:
            return 0.0
        return self._stats.total_weight

    def non_zero_weight(self) -> float:
        if self._stats.sum_of_weights < FP_FUDGE_EPS:
            return 0.0
        return self._stats.sum_of_weights

    def zero_weight(self) -> float:
        if self._stats.total_weight < FP_FUDGE_EPS:
            return 0.0
        return self._stats.total_weight - self._stats.sum_of_weights

    def max_weight(self) -> float:
        """Largest bin weight (the whole weight for a point)."""
        if not self.non_zero():
            return 0.0
        if self.is_point():
            return self.non_zero_weight()
        if self._bins is None:
            return 0.0
        return max(0.0, max(self._bins))

    def mean(self, include_zeros: bool = False) -> float:
        return self._stats.mean(include_zeros)

    def stdev(self, include_zeros: bool = False, legacy_zero_mass: bool = True) -> float:
        return self._stats.stdev(include_zeros, legacy_zero_mass)

    def occupancy(self) -> float:
        """
        Fraction of bins holding weight.

        When the total weight is smaller than the bin count the number of
        used bins is divided by the weight instead.
        """
        tw = self._stats.total_weight
        if tw == 0:
            return 0.0
        if tw < self._bin_count:
            return self.bins_used() / tw
        if self._bin_count == 0:
            return 0.0
        return self.bins_used() / self._bin_count

    def coverage(self) -> float:
        """Fraction of the total weight that is nonzero-valued."""
        if self._stats.total_weight == 0:
            return 0.0
        return _snap(self._stats.sum_of_weights / self._stats.total_weight)

    def max_likelihood(self) -> float:
        """Share of the nonzero weight held by the heaviest bin."""
        if self._stats.sum_of_weights == 0:
            return 0.0
        return _snap(self.max_weight() / self._stats.sum_of_weights)

    def span(self) -> float:
        """Relative width of the range, (max - min) / max."""
        if self.is_point():
            return 0.0
        return (self._max - self._min) / self._max

    # ------------------------------------------------------------------
    # Construction

    def update(self, value: float, weight: float = 1.0) -> None:
        """Stage a weighted value; see add_to_list."""
        super().update(value, weight)
        self.add_to_list(value, weight)

    def add_to_list(self, value: float, weight: float) -> None:
        """Stage a (value, weight) pair for the next build_from_list."""
        self._add_list.append(WeightedValue(float(value), float(weight)))

    def add_weighted_value(self, wv: WeightedValue) -> None:
        """Stage a weighted value, dropping pairs with a zero value or weight."""
        if wv.value > 0 and wv.weight > 0:
            logger.debug("(#%d) add: %r, %r", self._id, wv.value, wv.weight)
            self._add_list.append(WeightedValue(float(wv.value), float(wv.weight)))

    def clear_list(self) -> None:
        """Drop all staged values."""
        self._add_list.clear()

    @property
    def pending(self) -> int:
        """Number of staged values not yet built."""
        return len(self._add_list)

    def _reset(self) -> None:
        """Back to an empty point histogram at 0. Staged values are kept."""
        self.set_bin_count(0)
        self._stats.clear()
        self._min = 0.0
        self._max = 0.0

    def build_from_list(
        self,
        bin_count: int,
        total_weight: float,
        min_value: float = math.inf,
        max_value: float = 0.0,
    ) -> None:
        """
        Commit the staged values into bins and statistics.

        Staged pairs whose value or weight is within the tolerance of 0 are
        dropped. min_value and max_value seed the range: the data may widen
        it but never shrink it. If the staged nonzero weight falls short of
        total_weight, the remainder is recorded as zero weight.

        Args:
            bin_count: Number of bins (unused if the result is a point).
            total_weight: Total observed weight, zero-valued samples included.
            min_value: Lower seed of the range.
            max_value: Upper seed of the range.
        """
        self._reset()

        logger.debug(
            "(#%d) build: list(%d), bins: %d, [%r, %r] tw=%r",
            self._id,
            len(self._add_list),
            bin_count,
            min_value,
            max_value,
            total_weight,
        )

        lo = min_value
        hi = max_value
        weight = 0.0
        vals = []
        for wv in self._add_list:
            if wv.value > FP_FUDGE_EPS and wv.weight > FP_FUDGE_EPS:
                vals.append(wv)
                weight += wv.weight
                if wv.value < lo:
                    lo = wv.value
                if wv.value > hi:
                    hi = wv.value

        if not vals:
            # nothing but zero-valued mass
            self._stats.total_weight = total_weight
            self.clear_list()
            return

        self._stats = Stats.from_values(vals)

        if abs(self._stats.sum_of_weights - weight) > FP_FUDGE_EPS:
            self._error(
                "build_from_list: SoW != weight: %r vs %r",
                self._stats.sum_of_weights,
                weight,
            )

        if weight < total_weight:
            self._stats.total_weight += total_weight - weight

        if self._stats.total_weight <= 0 or _weights_disagree(
            self._stats.total_weight, total_weight
        ):
            self._error(
                "build_from_list: total weight incorrect: %r vs %r (%r)",
                self._stats.total_weight,
                total_weight,
                self._stats.total_weight - total_weight,
            )

        self.set_range(lo, hi)

        # points don't have bins; everything is held by range and stats
        if not self.is_point():
            self.set_bin_count(self._checked_bin_count(bin_count))
            for wv in vals:
                self.add_to_bin(self.which_bin(wv.value), wv.weight)

        self.clear_list()

    # ------------------------------------------------------------------
    # Queries

    def _scan(self, target: float, i: int, w: float) -> Tuple[int, float]:
        """Advance from bin i until the running weight would reach target."""
        bins = self._bins
        last = self._bin_count - 1
        while i < last and w + bins[i] < target:
            w += bins[i]
            i += 1
        return i, w

    def _interpolate(self, i: int, w: float, target: float) -> float:
        bw = self._bins[i]
        p = (target - w) / bw if bw > 0 else 0.0
        p = min(max(p, 0.0), 1.0)
        return self.bin_lower(i) + self.bin_width() * p

    def quantile(self, q: float) -> float:
        """
        Value v such that a fraction q of the nonzero weight lies below v.

        Zero-valued weight is ignored. Points answer their value whatever q.
        """
        if not self.non_zero():
            return 0.0

        if self.is_point():
            logger.debug(
                "(#%d) points have no quantile structure: q(%.2f) = %.2f",
                self._id,
                q,
                self._min,
            )
            return self._min

        if q < 0 or q > 1:
            self._warn("quantile out of range [0,1]: %r", q)

        if q <= 0:
            return self._min
        if q >= 1:
            return self._max

        target = q * self.non_zero_weight()
        i, w = self._scan(target, 0, 0.0)
        return self._interpolate(i, w, target)

    def quantile_range(self, q_min: float, q_max: float) -> Tuple[float, float]:
        """
        Values of the quantiles q_min and q_max, found in one pass.

        Returns:
            (v_min, v_max); (-1.0, -1.0) for empty histograms or
            q_min > q_max; (min, min) for points.
        """
        err_range = (-1.0, -1.0)

        if not self.non_zero():
            self._error("quantile_range: empty histograms don't have quantiles")
            return err_range

        if self.is_point():
            self._warn("quantile_range: points don't have quantiles")
            return (self._min, self._min)

        if q_min > q_max:
            self._error("quantile_range: min > max: (%r, %r)", q_min, q_max)
            return err_range

        if q_min < 0 or q_min > 1 or q_max < 0 or q_max > 1:
            self._warn("quantile_range: truncating invalid range: (%r, %r)", q_min, q_max)

        nzw = self.non_zero_weight()
        i = 0
        w = 0.0

        if q_min <= 0:
            v_min = self._min
        elif q_min >= 1:
            v_min = self._max
        else:
            target = q_min * nzw
            i, w = self._scan(target, i, w)
            v_min = self._interpolate(i, w, target)

        if q_max >= 1:
            v_max = self._max
        elif q_max <= 0:
            v_max = self._min
        else:
            # resume where the lower scan stopped
            target = q_max * nzw
            i, w = self._scan(target, i, w)
            v_max = self._interpolate(i, w, target)

        return (v_min, v_max)

    def query(self, q: float = 0.5) -> float:
        """Alias of quantile()."""
        return self.quantile(q)

    def prob_less_than(self, value: float) -> float:
        """P(X < value) over the nonzero weight."""
        if not self.non_zero():
            return 0.0
        return _snap(self.range_weight(0.0, value) / self._stats.sum_of_weights)

    def prob_between(self, lower: float, upper: float) -> float:
        """P(lower < X < upper) over the nonzero weight."""
        if not self.non_zero():
            return 0.0
        return _snap(self.range_weight(lower, upper) / self._stats.sum_of_weights)

    def est_prob_less_than(self, other: "WeightedHistogram") -> float:
        """
        Estimate P(self < other) for independent variables.

        The weight of other is treated as impulses at its bin centers.
        """
        if not (self.non_zero() and other.non_zero()):
            self._error("est_prob_less_than: can't compare empty histograms")
            return 0.0

        if self._max < other._min:
            return 1.0
        if self._min > other._max:
            return 0.0

        if other.is_point():
            return self.prob_less_than(other._min)

        p = 0.0
        osow = other._stats.sum_of_weights
        for i in range(other._bin_count):
            # P(X < y and Y = y)
            y = other.bin_center(i)
            p += self.prob_less_than(y) * (other._bins[i] / osow)

        return min(max(p, 0.0), 1.0)

    def apply_on_range(self, lower: float, upper: float, func: HistogramFunc) -> float:
        """
        Fold func over the value range [lower, upper].

        func is called with (value, proportion of nonzero weight) for the
        covered part of the first bin, each interior bin and the covered
        part of the last bin; the results are summed.
        """
        logger.debug("(#%d) apply_on_range [%.2f, %.2f]", self._id, lower, upper)

        if not self.non_zero():
            return 0.0
        if lower >= upper:
            return 0.0

        # a point is all-or-nothing
        if self.is_point():
            if lower <= self._min <= upper:
                return func(self._min, 1.0)
            return func(self._min, 0.0)

        lower = max(lower, self._min)
        upper = min(upper, self._max)
        if lower >= upper:
            return 0.0

        b_min = self.which_bin(lower)
        b_max = self.which_bin(upper)
        width = self.bin_width()
        nzw = self.non_zero_weight()

        if b_min == b_max:
            v = (upper + lower) / 2.0
            p = (upper - lower) / width
            return func(v, self.bin_weight(b_min) * p / nzw)

        rc = 0.0

        ub = self.bin_upper(b_min)
        p = (ub - lower) / width
        rc += func((ub + lower) / 2.0, self.bin_weight(b_min) * p / nzw)

        for b in range(b_min + 1, b_max):
            rc += func(self.bin_center(b), self.bin_weight(b) / nzw)

        lb = self.bin_lower(b_max)
        p = (upper - lb) / width
        rc += func((lb + upper) / 2.0, self.bin_weight(b_max) * p / nzw)

        return rc

    def apply_on_quantile(self, q_min: float, q_max: float, func: HistogramFunc) -> float:
        """
        Fold func over the quantile window [q_min, q_max].

        For a point, func is applied once at the point, weighted by the width
        of the window, so that disjoint windows never count it twice.
        """
        logger.debug("(#%d) apply_on_quantile [%.2f, %.2f]", self._id, q_min, q_max)

        if not self.non_zero():
            return 0.0
        if q_min >= q_max:
            return 0.0

        q_min = max(q_min, 0.0)
        q_max = min(q_max, 1.0)

        if self.is_point():
            return func(self._min, q_max - q_min)

        v_min, v_max = self.quantile_range(q_min, q_max)
        return self.apply_on_range(v_min, v_max, func)

    # ------------------------------------------------------------------
    # Synthesis

    def as_uniform(self) -> "WeightedHistogram":
        """
        Uniform distribution with this histogram's range, bins and weights.
        """
        # points are already a 0-range uniform
        if self.is_point():
            return self.copy()

        rc = type(self)()
        nzw = self.non_zero_weight()
        wpb = nzw / self._bin_count
        sow = 0.0
        for i in range(self._bin_count):
            rc.add_to_list(self.bin_center(i), wpb)
            sow += wpb

        if abs(sow - nzw) > WEIGHT_CHECK_EPS:
            self._warn("as_uniform: wrong weight: %r vs %r", sow, nzw)

        rc.build_from_list(self._bin_count, self.total_weight(), self._min, self._max)
        return rc

    def as_normal(self) -> "WeightedHistogram":
        """
        Normal distribution with this histogram's mean and stdev, truncated
        to its range and spread over the same bins.

        The weight is scaled up by the truncated tails so that the bins
        still add up to the nonzero weight.
        """
        if self.is_point():
            return self.copy()

        rc = type(self)()
        nzw = self.non_zero_weight()
        stats = self._stats

        phi_lb = stats.phi(self._min)  # P(x < min)
        truncated = phi_lb + (1.0 - stats.phi(self._max))
        if 1.0 - truncated <= FP_FUDGE_EPS:
            self._warn("as_normal: no mass left within range (truncated=%r)", truncated)
            adjusted = nzw
        else:
            adjusted = nzw / (1.0 - truncated)

        sow = 0.0
        for i in range(self._bin_count):
            phi_ub = stats.phi(self.bin_upper(i))
            weight = (phi_ub - phi_lb) * adjusted
            sow += weight
            rc.add_to_list(self.bin_center(i), weight)
            phi_lb = phi_ub

        if _weights_disagree(sow, nzw):
            self._warn("as_normal: wrong weight: %r vs %r", sow, nzw)

        rc.build_from_list(self._bin_count, self.total_weight(), self._min, self._max)
        return rc

    # ------------------------------------------------------------------
    # Comparison

    def earth_mover(self, other: "WeightedHistogram") -> float:
        """
        Earth mover's distance to another histogram with the same bins.

        The weight moved across each bin boundary is summed and normalized
        by the nonzero weight; scaling by the bin width is left to the
        caller.
        """
        if self.is_point():
            return 0.0

        if other.is_point() or other._bin_count != self._bin_count:
            self._error(
                "earth_mover: bin layouts differ: %d vs %d",
                self._bin_count,
                other._bin_count,
            )
            return 0.0

        mine = self._bins
        theirs = other._bins
        moved = 0.0
        dirt = mine[0] - theirs[0]
        for b in range(1, self._bin_count):
            moved += abs(dirt)
            dirt += mine[b] - theirs[b]

        return moved / self.non_zero_weight()

    def overlap(self, other: "WeightedHistogram", include_zero: bool = False) -> float:
        """
        Shared weight fraction of two histograms with identical layout.

        Both histograms must have the same bin count, range, total weight
        and nonzero weight; otherwise an error is logged and 0 returned.

        Args:
            other: The histogram to compare with.
            include_zero: Count the zero weight too and normalize by the
                          total weight instead of the nonzero weight.

        Returns:
            Overlap in [0, 1].
        """
        lo, hi = self.min_value, self.max_value
        olo, ohi = other.min_value, other.max_value

        # two zero histograms always overlap fully
        if not self.non_zero() and not other.non_zero():
            return 1.0

        if self._bin_count != other._bin_count:
            self._error(
                "overlap: different numbers of bins: %d vs %d",
                self._bin_count,
                other._bin_count,
            )
            return 0.0

        # also catches only one of the histograms being zero
        if lo != olo or hi != ohi:
            self._error(
                "overlap: range mismatch: [%r, %r] vs [%r, %r]", lo, hi, olo, ohi
            )
            return 0.0

        if self.total_weight() != other.total_weight():
            self._error(
                "overlap: total weight differs: %r vs %r",
                self.total_weight(),
                other.total_weight(),
            )
            return 0.0
        if self.non_zero_weight() != other.non_zero_weight():
            self._error(
                "overlap: weight differs: %r vs %r",
                self.non_zero_weight(),
                other.non_zero_weight(),
            )
            return 0.0

        rc = 0.0
        if include_zero:
            weight = self.total_weight()
            rc = _snap(min(self.zero_weight(), other.zero_weight()))
        else:
            weight = self.non_zero_weight()

        if weight == 0:
            return 0.0

        # points don't overlap unless they are equal
        if self.is_point() or other.is_point():
            if self.is_point() and other.is_point() and lo == olo:
                rc += _snap(min(self.non_zero_weight(), other.non_zero_weight()))
            return rc / weight

        for b in range(self._bin_count):
            rc += _snap(min(self.bin_weight(b), other.bin_weight(b)))

        rc = rc / weight
        if rc > 1.0:
            if rc > 1.0 + FP_FUDGE_EPS:
                self._error("overlap > 1: %r", rc)
            rc = 1.0
        return rc

    # ------------------------------------------------------------------
    # Products of independent variables

    def _non_zero_pairs(self) -> List[WeightedValue]:
        """(value, weight) impulses: the point itself, or the nonzero bins."""
        if self.is_point():
            return [WeightedValue(self._min, self._stats.sum_of_weights)]
        return [
            WeightedValue(self.bin_center(i), w)
            for i, w in enumerate(self._bins)
            if w != 0
        ]

    def cross(self, other: "WeightedHistogram") -> "WeightedHistogram":
        """
        Distribution of the product of two independent variables.

        Returns:
            A new histogram on [min1*min2, max1*max2] whose total weight is
            the product of the total weights; the zero histogram if either
            operand has no nonzero weight.
        """
        rc = type(self)()

        if not (self.non_zero() and other.non_zero()):
            return rc

        tw = self._stats.total_weight * other._stats.total_weight
        bin_count = self._bin_count or other._bin_count

        if self.is_point() and other.is_point():
            rc.add_to_list(
                self._min * other._min,
                self._stats.sum_of_weights * other._stats.sum_of_weights,
            )
        elif self.is_point():
            for i in range(other._bin_count):
                rc.add_to_list(
                    self._min * other.bin_center(i),
                    self._stats.sum_of_weights * other._bins[i],
                )
        elif other.is_point():
            for i in range(self._bin_count):
                rc.add_to_list(
                    self.bin_center(i) * other._min,
                    self._bins[i] * other._stats.sum_of_weights,
                )
        else:
            for i in range(self._bin_count):
                v = self.bin_center(i)
                w = self._bins[i]
                for j in range(other._bin_count):
                    rc.add_to_list(v * other.bin_center(j), w * other._bins[j])

        # only bin centers were used; set the true range
        lb = self._min * other._min
        ub = self._max * other._max

        if bin_count == 0 and not (self.is_point() and other.is_point()):
            self._error("cross: crossing full histogram but 0 bins")

        rc.build_from_list(bin_count, tw, lb, ub)
        return rc

    def cross_many(
        self, others: Iterable[Optional["WeightedHistogram"]]
    ) -> "WeightedHistogram":
        """
        Distribution of the product of self and several independent variables.

        The work is the product of the numbers of nonzero bins of all
        operands, so it grows exponentially with the number of operands.
        Any zero operand makes the result the zero histogram.
        """
        if not self.non_zero():
            return type(self)()

        others = list(others)
        if any(h is None or not h.non_zero() for h in others):
            return type(self)()

        bin_count = next(
            (h._bin_count for h in [self] + others if h._bin_count > 0), 0
        )

        tw = self._stats.total_weight
        lo = self._min
        hi = self._max
        invals = self._non_zero_pairs()

        for hist in others:
            tw *= hist._stats.total_weight
            lo *= hist._min
            hi *= hist._max
            invals = [
                WeightedValue(iv * v, iw * w)
                for v, w in hist._non_zero_pairs()
                for iv, iw in invals
            ]

        # zero weight is restored from tw by build_from_list
        rc = type(self)()
        for wv in invals:
            rc.add_to_list(wv.value, wv.weight)
        rc.build_from_list(bin_count, tw, lo, hi)
        return rc

    def merge(self, other: "WeightedHistogram") -> "WeightedHistogram":
        """
        Merge with another histogram onto a common grid.

        Raises:
            TypeError: If other is not a WeightedHistogram.
        """
        self._check_same_type(other)
        bin_count = self._bin_count or other._bin_count or self.DEFAULT_BIN_COUNT
        tw = self._stats.total_weight + other._stats.total_weight
        merged = type(self).from_histograms(bin_count, tw, [self, other])
        merged._items_processed = self._items_processed + other._items_processed
        return merged

    # ------------------------------------------------------------------
    # Binary records

    def write_record(self, record_id: int, stream: BinaryIO) -> bool:
        """
        Write this histogram as a sparse binary record.

        Values within the tolerance of 0 are written as exactly 0 and only
        nonzero bins are written. Points only write the header.

        Returns:
            True on success, False if the stream rejected a write.
        """
        st = self._stats
        if st.sum_of_weights - st.total_weight > FP_FUDGE_EPS:
            self._error(
                "write_record: SoW: %r, tw: %r, delta = %r",
                st.sum_of_weights,
                st.total_weight,
                st.sum_of_weights - st.total_weight,
            )

        used = []
        if self._bins is not None and not self.is_point():
            used = [
                BinRecord(i, w) for i, w in enumerate(self._bins) if w >= FP_FUDGE_EPS
            ]

        header = RecordHeader(
            record_id,
            _snap(st.sum_of_squares),
            _snap(st.sum_of_values),
            _snap(st.sum_of_weights),
            _snap(self._min),
            _snap(self._max),
            len(used),
        )

        if header.min_value == 0 and header.max_value > 0:
            self._warn("writing non-point histogram with 0 lower bound: %d", record_id)

        if not write_header(stream, header):
            return False

        for record in used:
            if not write_bin(stream, record):
                self._error(
                    "write_record: failed to write bin [%d, %r]",
                    record.index,
                    record.weight,
                )
                return False
        return True

    def read_record(self, bin_count: int, total_weight: float, stream: BinaryIO) -> int:
        """
        Replace this histogram with a record read from stream.

        Args:
            bin_count: Bin count of the profile's histograms.
            total_weight: Total weight of this histogram, kept by the profile.
            stream: Binary stream positioned at a record.

        Returns:
            The record id, or -1 if the record could not be read or is corrupt.
        """
        header = read_header(stream)
        if header is None:
            return -1

        self._reset()
        self.clear_list()

        self._stats.sum_of_squares = header.sum_of_squares
        self._stats.sum_of_values = header.sum_of_values
        self._stats.sum_of_weights = header.sum_of_weights
        self._stats.total_weight = total_weight

        # the total can never be below the nonzero weight
        if header.sum_of_weights - total_weight > FP_FUDGE_EPS:
            self._error(
                "read_record: SoW: %r, tw: %r, delta = %r; using SoW as total",
                header.sum_of_weights,
                total_weight,
                header.sum_of_weights - total_weight,
            )
            self._stats.total_weight = header.sum_of_weights

        self._min = header.min_value
        self._max = header.max_value
        if self._min == 0 and self._max != 0:
            self._warn(
                "read non-point histogram with 0 lower bound: %d", header.record_id
            )

        if self.is_point():
            return header.record_id

        if bin_count <= 0 or bin_count < header.bins_used:
            self._error(
                "histogram bin data corrupt: %d of %d bins used",
                header.bins_used,
                bin_count,
            )
            self._reset()
            return -1

        self.set_bin_count(bin_count)

        for b in range(header.bins_used):
            record = read_bin(stream)
            if record is None:
                self._error("could not read histogram bin entry %d", b)
                self._reset()
                return -1
            if record.index >= bin_count:
                self._error(
                    "histogram bin index out of range: %d of %d", record.index, bin_count
                )
                self._reset()
                return -1
            self._bins[record.index] = record.weight

        return header.record_id

    def to_bytes(self, record_id: Optional[int] = None) -> bytes:
        """Encode as a binary record (record_id defaults to the diagnostic id)."""
        buf = io.BytesIO()
        self.write_record(self._id if record_id is None else record_id, buf)
        return buf.getvalue()

    @classmethod
    def from_bytes(
        cls, data: bytes, *, bin_count: int, total_weight: float
    ) -> "WeightedHistogram":
        """
        Decode a binary record.

        The record does not carry the bin count or the total weight; both
        are profile-level settings and must be given.

        Args:
            data: The encoded record.
            bin_count: Bin count of the profile's histograms.
            total_weight: Total weight of the histogram, zero-valued samples
                          included.

        Raises:
            ValueError: If the record is truncated or corrupt.
        """
        hist = cls()
        if hist.read_record(bin_count, total_weight, io.BytesIO(data)) < 0:
            raise ValueError("Invalid serialized data: corrupt histogram record")
        return hist

    # ------------------------------------------------------------------
    # Dictionary form

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update(
            {
                "stats": self._stats.to_dict(),
                "min": self._min,
                "max": self._max,
                "bin_count": self._bin_count,
                "bins": [
                    [i, w] for i, w in enumerate(self._bins or ()) if w != 0
                ],
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeightedHistogram":
        """
        Create a histogram from a dictionary representation.

        Raises:
            ValueError: If a bin index is out of range.
        """
        hist = cls()
        hist._stats = Stats.from_dict(data.get("stats", {}))
        hist._min = float(data.get("min", 0.0))
        hist._max = float(data.get("max", 0.0))
        hist._items_processed = data.get("items_processed", 0)

        if hist.is_point():
            return hist

        bin_count = int(data.get("bin_count", 0))
        if bin_count <= 0:
            raise ValueError(
                f"Invalid serialized data: histogram with data has {bin_count} bins"
            )
        hist.set_bin_count(bin_count)
        for index, weight in data.get("bins", []):
            index = int(index)
            if not 0 <= index < bin_count:
                raise ValueError(
                    f"Invalid serialized data: bin index {index} out of range {bin_count}"
                )
            hist._bins[index] = float(weight)
        return hist

    # ------------------------------------------------------------------
    # Printing and diagnostics

    def describe(self) -> str:
        """Multi-line rendering of the sums, range and nonzero bins."""
        st = self._stats
        lines = [
            f"Sums (Val / W:!0+0 / Sq): {st.sum_of_values:.3f} / "
            f"{st.total_weight:.3f}:{st.sum_of_weights:.3f}+"
            f"{self.zero_weight():.3f} / {st.sum_of_squares:.3f}",
            f"Range [{self._min:.5f}, {self._max:.5f}] by {self.bin_width()} "
            f"({self.bins_used()}/{self._bin_count})",
        ]

        if self.is_point():
            if self.non_zero():
                lines.append(f"point[{self._min}] {self.non_zero_weight()}")
            else:
                lines.append("zero")
        else:
            for b in range(self._bin_count):
                w = self.bin_weight(b)
                if w != 0:
                    lines.append(
                        f"b{b} [{self.bin_lower(b):.5f}, {self.bin_upper(b):.5f}) {w}"
                    )
        return "\n".join(lines)

    def describe_stats(self) -> str:
        """
        One tab-separated line of shape descriptors.

        Columns: P/H, point value, occupancy, coverage, max likelihood,
        span, earth mover's distance to the uniform and to the normal
        distribution over the same bins.
        """
        if self.is_point():
            return f"P\t{self._min}\t0.0\t{self.coverage()}\t1.0\t1\t0\t0"

        emd_u = self.earth_mover(self.as_uniform())
        emd_n = self.earth_mover(self.as_normal())
        return (
            f"H\t*\t{self.occupancy()}\t{self.coverage()}\t{self.max_likelihood()}"
            f"\t{self.span()}\t{emd_u:0.4f}\t{emd_n:0.4f}"
        )

    def estimate_size(self) -> int:
        size = super().estimate_size()
        size += sys.getsizeof(self._stats)
        if self._bins is not None:
            size += sys.getsizeof(self._bins)
        size += sys.getsizeof(self._add_list)
        size += len(self._add_list) * sys.getsizeof(WeightedValue(0.0, 0.0))
        return size

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update(
            {
                "point": self.is_point(),
                "bin_count": self._bin_count,
                "bins_used": self.bins_used(),
                "min": self.min_value,
                "max": self.max_value,
                "total_weight": self.total_weight(),
                "non_zero_weight": self.non_zero_weight(),
                "zero_weight": self.zero_weight(),
                "mean": self.mean(),
                "stdev": self.stdev(),
                "occupancy": self.occupancy(),
                "coverage": self.coverage(),
                "max_likelihood": self.max_likelihood(),
                "span": self.span(),
                "pending": len(self._add_list),
            }
        )
        return stats

    def clear(self) -> None:
        """Reset to an empty point histogram and drop staged values."""
        self._reset()
        self.clear_list()
        super().clear()

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return (
            f"WeightedHistogram(id={self._id}, bins={self._bin_count}, "
            f"range=[{self._min:.4g}, {self._max:.4g}], "
            f"weight={self.non_zero_weight():.4g}+{self.zero_weight():.4g})"
        )
