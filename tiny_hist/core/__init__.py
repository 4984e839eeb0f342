"""
Core functionality for tiny-hist.
"""

from tiny_hist.core.base import DistributionSummary
from tiny_hist.core.constants import DEFAULT_BIN_COUNT, FP_FUDGE_EPS, WEIGHT_CHECK_EPS
from tiny_hist.core.records import BinRecord, RecordHeader

__all__ = [
    # Base classes
    "DistributionSummary",
    # Binary records
    "RecordHeader",
    "BinRecord",
    # Tolerances
    "FP_FUDGE_EPS",
    "WEIGHT_CHECK_EPS",
    "DEFAULT_BIN_COUNT",
]
