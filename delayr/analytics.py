"""Percentile engine: pure, stateless statistics over latency samples.

Percentiles use linear interpolation between the two closest ranks of the
sorted values (not nearest-rank), so p95 of a small sample set is usually a
fractional value. Every function here is deterministic and independent of
input order; sorting happens internally.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from .models import (
    AnalyticsResult,
    AssertionResult,
    HistogramBucket,
    LatencyChange,
    PayloadBucket,
    Sample,
    Thresholds,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

SUMMARY_PERCENTILES = (50, 95, 99)

# (label, low inclusive, high exclusive)
PAYLOAD_BUCKETS: tuple[tuple[str, float, float], ...] = (
    ("0-100", 0, 100),
    ("100-500", 100, 500),
    ("500-1000", 500, 1000),
    ("1000-5000", 1000, 5000),
    ("5000+", 5000, math.inf),
)
HISTOGRAM_BUCKETS: tuple[tuple[str, float, float], ...] = (
    ("0-50", 0, 50),
    ("50-100", 50, 100),
    ("100-200", 100, 200),
    ("200-500", 200, 500),
    ("500-1000", 500, 1000),
    ("1000+", 1000, math.inf),
)
# p95 change (percent) beyond which a group counts as improved/regressed
DEFAULT_CHANGE_TOLERANCE_PCT = 10.0


def compute_percentiles(values: Iterable[float], targets: Iterable[float]) -> dict[float, float]:
    """Percentiles of ``values`` by linear interpolation.

    Args:
        values: Latency values in any order
        targets: Percentiles to compute, each in [0, 100]

    Returns:
        Mapping of each target to its value; every target maps to 0.0 when
        ``values`` is empty.

    Raises:
        ValueError: If a target is outside [0, 100]
    """
    targets = list(targets)
    for p in targets:
        if not 0 <= p <= 100:
            raise ValueError(f"percentile must be within [0, 100], got {p}")
    ordered = sorted(values)
    if not ordered:
        return {p: 0.0 for p in targets}

    last = len(ordered) - 1
    result: dict[float, float] = {}
    for p in targets:
        idx = (p / 100.0) * last
        lo = math.floor(idx)
        hi = math.ceil(idx)
        if lo == hi:
            result[p] = ordered[lo]
        else:
            frac = idx - lo
            result[p] = ordered[lo] * (1 - frac) + ordered[hi] * frac
    return result


def compute_std_dev(values: Sequence[float], mean: float) -> float:
    """Population standard deviation (divides by n). 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def _summarize_group(
    endpoint: str,
    method: str,
    group: list[Sample],
    name: str | None,
) -> AnalyticsResult:
    latencies = [s.latency_ms for s in group]
    total = len(group)
    pct = compute_percentiles(latencies, SUMMARY_PERCENTILES)
    avg = sum(latencies) / total
    error_count = sum(1 for s in group if s.is_error)
    error_rate = round(error_count / total * 100, 2)
    return AnalyticsResult(
        endpoint=endpoint,
        method=method,
        name=name,
        p50=pct[50],
        p95=pct[95],
        p99=pct[99],
        min=min(latencies),
        max=max(latencies),
        avg=avg,
        std_dev=compute_std_dev(latencies, avg),
        avg_payload_size=round(sum(s.request_size_bytes for s in group) / total),
        request_count=total,
        error_count=error_count,
        error_rate=error_rate,
        success_rate=round(100 - error_rate, 2),
    )


def compute_summary(
    samples: Iterable[Sample],
    names: Mapping[str, str] | None = None,
) -> list[AnalyticsResult]:
    """Per (endpoint, method) statistics, slowest p95 first.

    Groups are built in first-seen order so ties on p95 keep a stable order.

    Args:
        samples: Samples of one or more runs
        names: Optional endpoint URL -> display name mapping
    """
    groups: dict[tuple[str, str], list[Sample]] = {}
    for s in samples:
        groups.setdefault((s.endpoint_url, s.method), []).append(s)

    names = names or {}
    results = [
        _summarize_group(endpoint, method, group, names.get(endpoint))
        for (endpoint, method), group in groups.items()
    ]
    results.sort(key=lambda r: r.p95, reverse=True)
    return results


def compute_payload_buckets(samples: Iterable[Sample], method_filter: str = "POST") -> list[PayloadBucket]:
    """p95 latency by request size bucket for one method. Empty buckets are omitted."""
    method_filter = method_filter.upper()
    by_bucket: list[list[float]] = [[] for _ in PAYLOAD_BUCKETS]
    for s in samples:
        if s.method.upper() != method_filter:
            continue
        for i, (_, low, high) in enumerate(PAYLOAD_BUCKETS):
            if low <= s.request_size_bytes < high:
                by_bucket[i].append(s.latency_ms)
                break

    out: list[PayloadBucket] = []
    for (label, _, _), latencies in zip(PAYLOAD_BUCKETS, by_bucket):
        if latencies:
            out.append(
                PayloadBucket(
                    bucket=label,
                    p95=compute_percentiles(latencies, (95,))[95],
                    request_count=len(latencies),
                )
            )
    return out


def compute_histogram(samples: Iterable[Sample]) -> list[HistogramBucket]:
    """Latency counts for all six fixed ranges, ascending, zero counts included."""
    counts = [0] * len(HISTOGRAM_BUCKETS)
    for s in samples:
        for i, (_, low, high) in enumerate(HISTOGRAM_BUCKETS):
            if low <= s.latency_ms < high:
                counts[i] += 1
                break
    return [HistogramBucket(bucket=label, count=c) for (label, _, _), c in zip(HISTOGRAM_BUCKETS, counts)]


def percentage_change(baseline: float, current: float) -> float:
    """Relative change in percent. A zero baseline yields 0 (no change) or 100."""
    if baseline == 0:
        return 0.0 if current == 0 else 100.0
    return (current - baseline) / baseline * 100


def compare_results(
    baseline: Iterable[AnalyticsResult],
    current: Iterable[AnalyticsResult],
    tolerance_pct: float = DEFAULT_CHANGE_TOLERANCE_PCT,
) -> list[LatencyChange]:
    """Percentile deltas for groups present in both result sets, in ``current`` order."""
    base_by_key = {(r.endpoint, r.method): r for r in baseline}
    changes: list[LatencyChange] = []
    for cur in current:
        base = base_by_key.get((cur.endpoint, cur.method))
        if base is None:
            continue
        p95_change = percentage_change(base.p95, cur.p95)
        changes.append(
            LatencyChange(
                endpoint=cur.endpoint,
                method=cur.method,
                p50_change=percentage_change(base.p50, cur.p50),
                p95_change=p95_change,
                p99_change=percentage_change(base.p99, cur.p99),
                improved=p95_change < -tolerance_pct,
                regressed=p95_change > tolerance_pct,
            )
        )
    return changes


def evaluate_thresholds(results: Iterable[AnalyticsResult], thresholds: Thresholds) -> list[AssertionResult]:
    """Check each group's percentiles against the configured ceilings (actual <= expected passes)."""
    checks: list[AssertionResult] = []
    if thresholds.is_empty:
        return checks
    for r in results:
        for metric in ("p50", "p95", "p99"):
            expected = getattr(thresholds, metric)
            if expected is None:
                continue
            actual = getattr(r, metric)
            checks.append(
                AssertionResult(
                    metric=metric,
                    endpoint=r.endpoint,
                    method=r.method,
                    expected=expected,
                    actual=actual,
                    passed=actual <= expected,
                )
            )
    return checks
