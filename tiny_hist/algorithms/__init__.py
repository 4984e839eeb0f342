"""
Algorithm implementations for tiny-hist.
"""

from tiny_hist.algorithms.histogram import WeightedHistogram
from tiny_hist.algorithms.stats import Stats, WeightedValue

__all__ = [
    "Stats",
    "WeightedValue",
    "WeightedHistogram",
]
