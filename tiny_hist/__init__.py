"""
tiny-hist - Weighted histograms for profile-guided analysis

tiny-hist represents, merges, compares and persists approximate probability
distributions gathered while profiling a program.
"""

__version__ = "0.1.0"

# Import main classes to make them available at the top level
from tiny_hist.algorithms.histogram import WeightedHistogram
from tiny_hist.algorithms.stats import Stats, WeightedValue
from tiny_hist.core.base import DistributionSummary

__all__ = [
    # Core base classes
    "DistributionSummary",
    # Algorithm implementations
    "WeightedHistogram",
    "Stats",
    "WeightedValue",
]
