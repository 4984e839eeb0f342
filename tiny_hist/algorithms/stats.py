"""
Sufficient statistics over weighted, non-negative values.

A Stats object keeps four running sums: the weighted sum of values, the
weighted sum of squared deviations from the mean, the weight of samples
with a nonzero value, and the total weight (which also covers samples whose
value was 0). Two Stats combine with the parallel-variance formula, so
statistics gathered independently (different runs, different call paths)
can be merged without revisiting the samples.

References:
    - Chan, T. F., Golub, G. H., & LeVeque, R. J. (1979).
      Updating formulae and a pairwise algorithm for computing sample variances.
    - Abramowitz, M., & Stegun, I. A. (1964). Handbook of Mathematical
      Functions, formula 7.1.26.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, NamedTuple

from tiny_hist.core.constants import WEIGHT_CHECK_EPS

logger = logging.getLogger(__name__)

# Abramowitz-Stegun 7.1.26 constants
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


class WeightedValue(NamedTuple):
    """A (value, weight) observation. Both are expected to be non-negative."""

    value: float
    weight: float


@dataclass
class Stats:
    """
    Running sufficient statistics of a weighted multiset of values.

    Attributes:
        sum_of_squares: Weighted sum of squared deviations from the mean
                        (not a sum of raw squares).
        sum_of_values: Weighted sum of the values.
        sum_of_weights: Weight of the samples with a nonzero value.
        total_weight: Weight of all samples, including zero-valued ones.
    """

    sum_of_squares: float = 0.0
    sum_of_values: float = 0.0
    sum_of_weights: float = 0.0
    total_weight: float = 0.0

    @classmethod
    def from_values(cls, values: Iterable[WeightedValue]) -> "Stats":
        """
        Build statistics from a finite collection of weighted values.

        Zero-weight entries are skipped. Zero-valued entries only count
        towards total_weight.

        Args:
            values: (value, weight) pairs.

        Returns:
            A new Stats.
        """
        stats = cls()
        vals = [WeightedValue(float(v), float(w)) for v, w in values]
        if not vals:
            return stats

        for value, weight in vals:
            if weight == 0:
                continue
            stats.total_weight += weight
            if value != 0:
                stats.sum_of_weights += weight
                stats.sum_of_values += value * weight

        mean = stats.mean()
        for value, weight in vals:
            if weight == 0:
                continue
            delta = value - mean
            stats.sum_of_squares += delta * delta * weight

        if stats.sum_of_weights - stats.total_weight > WEIGHT_CHECK_EPS:
            logger.warning(
                "Bad stats: weight %r exceeds total %r (%r)",
                stats.sum_of_weights,
                stats.total_weight,
                stats.sum_of_weights - stats.total_weight,
            )
        return stats

    def combine(self, other: "Stats") -> None:
        """
        Fold another Stats into this one.

        The operation is commutative and associative. The sum of squares is
        merged with SS = SSa + SSb + na*nb/(na+nb) * (Sa/na - Sb/nb)^2 where
        na and nb are the nonzero-value weights of each side; the cross term
        is skipped when either side has no nonzero-valued weight.

        Args:
            other: The statistics to add. Not modified.
        """
        if other.total_weight == 0:
            return

        if self.total_weight == 0:
            self.sum_of_squares = other.sum_of_squares
            self.sum_of_values = other.sum_of_values
            self.sum_of_weights = other.sum_of_weights
            self.total_weight = other.total_weight
            return

        na = self.sum_of_weights
        nb = other.sum_of_weights
        sa = self.sum_of_values
        sb = other.sum_of_values

        self.sum_of_squares += other.sum_of_squares
        if na > 0 and nb > 0:
            delta = sa / na - sb / nb
            self.sum_of_squares += na * nb / (na + nb) * delta * delta

        self.sum_of_values += sb
        self.sum_of_weights += nb
        self.total_weight += other.total_weight

        if self.sum_of_weights - self.total_weight > WEIGHT_CHECK_EPS:
            logger.warning(
                "Bad stats after combine: weight %r exceeds total %r",
                self.sum_of_weights,
                self.total_weight,
            )

    def mean(self, include_zeros: bool = False) -> float:
        """
        Weighted mean of the values.

        Args:
            include_zeros: Divide by the total weight (zero-valued samples
                           included) instead of the nonzero-value weight.
        """
        if self.sum_of_weights == 0:
            return 0.0
        if include_zeros:
            if self.total_weight <= 0:
                return 0.0
            return self.sum_of_values / self.total_weight
        return self.sum_of_values / self.sum_of_weights

    def stdev(self, include_zeros: bool = False, legacy_zero_mass: bool = True) -> float:
        """
        Weighted standard deviation of the values.

        With include_zeros the zero-valued mass is folded into the sum of
        squares as zero_weight * mean^2 before dividing by the total weight.
        Profiles written so far were analysed with a zero-mass weight that
        always came out as 0; that remains the default. Pass
        legacy_zero_mass=False to use total_weight - sum_of_weights.

        Args:
            include_zeros: Account for the zero-valued samples.
            legacy_zero_mass: Keep the historical zero-mass weight of 0.
        """
        if self.sum_of_weights == 0:
            return 0.0

        if not include_zeros:
            return math.sqrt(self.sum_of_squares / self.sum_of_weights)

        if self.total_weight <= 0:
            return 0.0
        if legacy_zero_mass:
            zeros = self.total_weight - self.total_weight
        else:
            zeros = self.total_weight - self.sum_of_weights
        delta = self.sum_of_values / self.sum_of_weights  # 0 - mean
        ss0 = self.sum_of_squares + delta * delta * zeros
        return math.sqrt(max(ss0, 0.0) / self.total_weight)

    def phi(self, x: float) -> float:
        """
        Normal CDF at x, using this object's own mean and stdev.

        Returns 0 for empty statistics. A zero stdev gives a step at the mean.
        """
        if self.sum_of_weights == 0:
            return 0.0

        mean = self.mean()
        sd = self.stdev()
        if sd == 0:
            if x == mean:
                return 0.5
            return 1.0 if x > mean else 0.0

        z = (x - mean) / sd
        sign = -1 if z < 0 else 1
        z = abs(z) / math.sqrt(2.0)

        t = 1.0 / (1.0 + _P * z)
        y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(
            -z * z
        )
        return 0.5 * (1.0 + sign * y)

    def clear(self) -> None:
        """Zero all sums."""
        self.sum_of_squares = 0.0
        self.sum_of_values = 0.0
        self.sum_of_weights = 0.0
        self.total_weight = 0.0

    def copy(self) -> "Stats":
        return Stats(
            self.sum_of_squares,
            self.sum_of_values,
            self.sum_of_weights,
            self.total_weight,
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "Stats":
        return cls(
            sum_of_squares=float(data.get("sum_of_squares", 0.0)),
            sum_of_values=float(data.get("sum_of_values", 0.0)),
            sum_of_weights=float(data.get("sum_of_weights", 0.0)),
            total_weight=float(data.get("total_weight", 0.0)),
        )

    def describe(self) -> str:
        """One-line rendering of the sums."""
        return (
            f"v={self.sum_of_values}, T={self.total_weight}, "
            f"w={self.sum_of_weights}, s={self.sum_of_squares}"
        )
