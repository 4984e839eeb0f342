"""
Weighted Histogram Demo for TinyHist.

This example builds execution-time profiles from several simulated runs,
merges them, and shows how to query, compare and store the result.
"""

import io
import logging
import random

from tiny_hist import WeightedHistogram

BIN_COUNT = 20


def simulate_run(seed, calls=200, idle_share=0.2):
    """
    Simulate one run of a call site.

    Returns (value, weight) pairs where the value is the time spent per call
    and the weight is the number of calls observed with that time. A share
    of the calls did no work at all and report a time of 0.
    """
    rng = random.Random(seed)
    samples = []
    for _ in range(calls):
        if rng.random() < idle_share:
            samples.append((0.0, 1.0))
        else:
            samples.append((rng.lognormvariate(1.0, 0.4), float(rng.randint(1, 3))))
    return samples


def demonstrate_basic_histogram():
    """Build one histogram and read back its summary statistics."""
    print("\n=== Basic Weighted Histogram Demo ===")

    hist = WeightedHistogram.from_values(simulate_run(1), bin_count=BIN_COUNT)

    print(f"Range: [{hist.min_value:.3f}, {hist.max_value:.3f}]")
    print(f"Total weight: {hist.total_weight():.1f}")
    print(f"  nonzero: {hist.non_zero_weight():.1f}")
    print(f"  zero:    {hist.zero_weight():.1f}")
    print(f"Mean: {hist.mean():.3f} (with zeros: {hist.mean(include_zeros=True):.3f})")
    print(f"Stdev: {hist.stdev():.3f}")
    print(f"Bins used: {hist.bins_used()}/{hist.bin_count}")
    print(f"Memory usage: {hist.estimate_size()} bytes")

    print("\nQuantiles:")
    for q in (0.1, 0.5, 0.9, 0.99):
        print(f"  q{q:<5} {hist.quantile(q):.3f}")

    lo, hi = hist.quantile_range(0.25, 0.75)
    print(f"Inter-quartile range: [{lo:.3f}, {hi:.3f}]")
    print(f"P(x < 3.0): {hist.prob_less_than(3.0):.3f}")
    print(f"P(2.0 <= x <= 4.0): {hist.prob_between(2.0, 4.0):.3f}")

    tail_mass = hist.apply_on_quantile(0.9, 1.0, lambda center, w: center * w)
    print(f"Time spent in the slowest 10%: {tail_mass:.2f}")


def demonstrate_merging():
    """Merge profiles of several runs onto a common grid."""
    print("\n=== Merge Demo ===")

    runs = [
        WeightedHistogram.from_values(simulate_run(seed), bin_count=BIN_COUNT)
        for seed in range(2, 7)
    ]
    for i, run in enumerate(runs):
        print(
            f"  run {i}: [{run.min_value:.3f}, {run.max_value:.3f}] "
            f"weight {run.total_weight():.1f}"
        )

    total = sum(run.total_weight() for run in runs)
    merged = WeightedHistogram.from_histograms(BIN_COUNT, total, runs)

    print(f"\nMerged range: [{merged.min_value:.3f}, {merged.max_value:.3f}]")
    print(f"Merged weight: {merged.total_weight():.1f} (expected {total:.1f})")
    print(f"Merged median: {merged.quantile(0.5):.3f}")
    print("\n" + merged.describe())


def demonstrate_comparison():
    """Compare a profile against reference shapes and another profile."""
    print("\n=== Shape Comparison Demo ===")

    before = WeightedHistogram.from_values(simulate_run(7), bin_count=BIN_COUNT)
    after = WeightedHistogram.from_values(
        [(v * 0.8, w) for v, w in simulate_run(8)], bin_count=BIN_COUNT
    )

    print(f"EMD to uniform: {before.earth_mover(before.as_uniform()):.4f}")
    print(f"EMD to normal:  {before.earth_mover(before.as_normal()):.4f}")
    print(f"P(after < before): {before.est_prob_less_than(after):.3f}")

    print("\nDistribution of the product of both times:")
    product = before.cross(after)
    print(f"  range: [{product.min_value:.3f}, {product.max_value:.3f}]")
    print(f"  median: {product.quantile(0.5):.3f}")

    print("\nShape summary (type, value, occupancy, coverage, ML, span, EMD U/N):")
    print("  " + before.describe_stats())


def demonstrate_serialization():
    """Write profiles as binary records and as JSON."""
    print("\n=== Serialization Demo ===")

    profiles = [
        WeightedHistogram.from_values(simulate_run(seed), bin_count=BIN_COUNT)
        for seed in range(10, 13)
    ]

    stream = io.BytesIO()
    for record_id, hist in enumerate(profiles):
        hist.write_record(record_id, stream)
    print(f"Binary size of {len(profiles)} records: {len(stream.getvalue())} bytes")

    # bin count and total weight are kept by the profile, not the record
    stream.seek(0)
    for hist in profiles:
        restored = WeightedHistogram()
        record_id = restored.read_record(BIN_COUNT, hist.total_weight(), stream)
        print(
            f"  record {record_id}: mean {restored.mean():.3f} "
            f"(was {hist.mean():.3f}), bins used {restored.bins_used()}"
        )

    serialized = profiles[0].serialize(format="json")
    print(f"\nJSON size: {len(serialized)} bytes")
    restored = WeightedHistogram.deserialize(serialized, format="json")
    print(f"Median matches: {restored.quantile(0.5) == profiles[0].quantile(0.5)}")
    print(f"Overlap with the original: {restored.overlap(profiles[0]):.3f}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    demonstrate_basic_histogram()
    demonstrate_merging()
    demonstrate_comparison()
    demonstrate_serialization()
