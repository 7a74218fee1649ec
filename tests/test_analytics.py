"""Unit tests for analytics (percentiles, summary, buckets, histogram, comparison, thresholds)."""

from __future__ import annotations

import math

import pytest

from delayr.analytics import (
    compare_results,
    compute_histogram,
    compute_payload_buckets,
    compute_percentiles,
    compute_std_dev,
    compute_summary,
    evaluate_thresholds,
    percentage_change,
)
from delayr.models import AnalyticsResult, Thresholds


def _result(endpoint: str, p50: float, p95: float, p99: float, method: str = "GET") -> AnalyticsResult:
    return AnalyticsResult(
        endpoint=endpoint, method=method, p50=p50, p95=p95, p99=p99,
        min=p50, max=p99, avg=p50, std_dev=0.0, avg_payload_size=0,
        request_count=10, error_count=0, error_rate=0.0, success_rate=100.0,
    )


def test_percentiles_linear_interpolation() -> None:
    pct = compute_percentiles([10, 20, 30, 40, 50], (50, 95, 99))
    assert pct[50] == 30
    assert pct[95] == pytest.approx(48.0)
    assert pct[99] == pytest.approx(49.6)


def test_percentiles_input_order_irrelevant() -> None:
    assert compute_percentiles([30, 10, 20], (50,)) == compute_percentiles([10, 20, 30], (50,))


def test_percentiles_three_values() -> None:
    pct = compute_percentiles([10, 20, 30], (50, 95, 99))
    assert pct[50] == 20
    assert pct[95] == pytest.approx(29.0)
    assert pct[99] == pytest.approx(29.8)


def test_percentiles_single_value() -> None:
    pct = compute_percentiles([42.0], (50, 95, 99))
    assert pct == {50: 42.0, 95: 42.0, 99: 42.0}


def test_percentiles_empty_is_zero() -> None:
    assert compute_percentiles([], (50, 95)) == {50: 0.0, 95: 0.0}


def test_percentiles_bounds() -> None:
    pct = compute_percentiles([5, 1, 9], (0, 100))
    assert pct[0] == 1
    assert pct[100] == 9


def test_percentiles_out_of_range_raises() -> None:
    with pytest.raises(ValueError):
        compute_percentiles([1, 2], (101,))


def test_std_dev_population() -> None:
    values = [2, 4, 4, 4, 5, 5, 7, 9]
    assert compute_std_dev(values, 5.0) == pytest.approx(2.0)
    assert compute_std_dev([3.0], 3.0) == 0.0


def test_summary_single_group(make_sample) -> None:
    samples = [make_sample(latency_ms=v) for v in (10, 20, 30, 40, 50)]
    (r,) = compute_summary(samples)
    assert r.request_count == 5
    assert r.p50 == 30
    assert r.min == 10
    assert r.max == 50
    assert r.avg == 30
    assert r.std_dev == pytest.approx(math.sqrt(200))
    assert r.error_count == 0
    assert r.error_rate == 0.0
    assert r.success_rate == 100.0


def test_summary_error_rate_rounding(make_sample) -> None:
    samples = [make_sample(status_code=200), make_sample(status_code=200), make_sample(status_code=0)]
    (r,) = compute_summary(samples)
    assert r.error_count == 1
    assert r.error_rate == 33.33
    assert r.success_rate == 66.67


def test_summary_counts_4xx_and_5xx_as_errors(make_sample) -> None:
    samples = [
        make_sample(status_code=404),
        make_sample(status_code=500),
        make_sample(status_code=302),
        make_sample(status_code=200),
    ]
    (r,) = compute_summary(samples)
    assert r.error_count == 2
    assert r.error_rate == 50.0


def test_summary_sorted_by_p95_desc(make_sample) -> None:
    samples = [make_sample(endpoint_url="https://a.example.com", latency_ms=10)]
    samples += [make_sample(endpoint_url="https://b.example.com", latency_ms=300)]
    samples += [make_sample(endpoint_url="https://c.example.com", latency_ms=50)]
    results = compute_summary(samples)
    assert [r.endpoint for r in results] == [
        "https://b.example.com",
        "https://c.example.com",
        "https://a.example.com",
    ]


def test_summary_ties_keep_first_seen_order(make_sample) -> None:
    samples = [
        make_sample(endpoint_url="https://x.example.com", latency_ms=10),
        make_sample(endpoint_url="https://y.example.com", latency_ms=10),
    ]
    results = compute_summary(samples)
    assert [r.endpoint for r in results] == ["https://x.example.com", "https://y.example.com"]


def test_summary_groups_by_endpoint_and_method(make_sample) -> None:
    samples = [
        make_sample(method="GET"),
        make_sample(method="POST", request_size_bytes=10),
        make_sample(method="POST", request_size_bytes=20),
    ]
    results = compute_summary(samples)
    assert len(results) == 2
    post = next(r for r in results if r.method == "POST")
    assert post.request_count == 2
    assert post.avg_payload_size == 15


def test_summary_applies_names(make_sample) -> None:
    (r,) = compute_summary([make_sample()], names={"https://api.example.com/a": "alpha"})
    assert r.name == "alpha"


def test_summary_empty() -> None:
    assert compute_summary([]) == []


def test_payload_buckets_post_only(make_sample) -> None:
    samples = [
        make_sample(method="GET", request_size_bytes=10),
        make_sample(method="POST", request_size_bytes=50, latency_ms=10),
        make_sample(method="POST", request_size_bytes=99, latency_ms=20),
        make_sample(method="POST", request_size_bytes=100, latency_ms=30),
        make_sample(method="POST", request_size_bytes=7000, latency_ms=40),
    ]
    buckets = compute_payload_buckets(samples)
    assert [b.bucket for b in buckets] == ["0-100", "100-500", "5000+"]
    assert buckets[0].request_count == 2
    assert buckets[0].p95 == pytest.approx(19.5)
    assert buckets[1].request_count == 1


def test_payload_buckets_none_for_get_only(make_sample) -> None:
    assert compute_payload_buckets([make_sample(method="GET")]) == []


def test_histogram_always_six_buckets(make_sample) -> None:
    samples = [make_sample(latency_ms=v) for v in (10, 49.9, 50, 150, 999, 1000, 5000)]
    hist = compute_histogram(samples)
    assert [h.bucket for h in hist] == ["0-50", "50-100", "100-200", "200-500", "500-1000", "1000+"]
    assert [h.count for h in hist] == [2, 1, 1, 0, 1, 2]


def test_histogram_empty() -> None:
    hist = compute_histogram([])
    assert len(hist) == 6
    assert all(h.count == 0 for h in hist)


def test_percentage_change() -> None:
    assert percentage_change(100, 110) == pytest.approx(10.0)
    assert percentage_change(100, 50) == pytest.approx(-50.0)
    assert percentage_change(0, 0) == 0.0
    assert percentage_change(0, 5) == 100.0


def test_compare_results_flags() -> None:
    baseline = [
        _result("https://a.example.com", 10, 100, 120),
        _result("https://b.example.com", 10, 100, 120),
        _result("https://c.example.com", 10, 100, 120),
    ]
    current = [
        _result("https://a.example.com", 10, 150, 120),
        _result("https://b.example.com", 10, 50, 120),
        _result("https://c.example.com", 10, 105, 120),
        _result("https://new.example.com", 10, 105, 120),
    ]
    changes = compare_results(baseline, current)
    assert [c.endpoint for c in changes] == [
        "https://a.example.com",
        "https://b.example.com",
        "https://c.example.com",
    ]
    a, b, c = changes
    assert a.regressed and not a.improved
    assert b.improved and not b.regressed
    assert not c.improved and not c.regressed
    assert a.p95_change == pytest.approx(50.0)


def test_evaluate_thresholds() -> None:
    results = [_result("https://a.example.com", 10, 100, 200)]
    checks = evaluate_thresholds(results, Thresholds(p95=100, p99=150))
    assert [(c.metric, c.passed) for c in checks] == [("p95", True), ("p99", False)]


def test_evaluate_thresholds_empty() -> None:
    assert evaluate_thresholds([_result("https://a.example.com", 1, 2, 3)], Thresholds()) == []


def test_three_sample_group(make_sample) -> None:
    samples = [make_sample(endpoint_url="/a", latency_ms=v) for v in (10, 20, 30)]
    (r,) = compute_summary(samples)
    assert r.p50 == 20
    assert r.p95 == pytest.approx(29.0)
    assert r.p99 == pytest.approx(29.8)
    assert r.error_count == 0
    assert r.success_rate == 100


def test_mixed_status_group(make_sample) -> None:
    samples = [make_sample(endpoint_url="/b", status_code=code) for code in (200, 200, 500, 0)]
    (r,) = compute_summary(samples)
    assert r.error_count == 2
    assert r.error_rate == 50
    assert r.success_rate == 50


def test_evaluate_thresholds_skips_when_nothing_configured(make_sample) -> None:
    results = compute_summary([make_sample(latency_ms=5000)])
    assert Thresholds().is_empty
    assert evaluate_thresholds(results, Thresholds()) == []
