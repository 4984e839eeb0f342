"""
Numeric tolerances and defaults shared by the tiny-hist summaries.
"""

# Weights, values and bin boundaries closer than this are treated as equal.
FP_FUDGE_EPS: float = 1.0e-9

# Tighter tolerance for weight bookkeeping checks (stats and totals).
WEIGHT_CHECK_EPS: float = 1.0e-10

# Bin count used when a histogram with data is requested with no bins.
DEFAULT_BIN_COUNT: int = 10
