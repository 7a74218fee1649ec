"""
delayr - HTTP endpoint latency measurement.

Sequential timed probes per endpoint, every sample kept, percentile analytics
(p50/p95/p99, error rate, payload-size buckets, latency histogram) computed
on demand. CLI for CI pipelines, HTTP API for shareable runs.
"""

__version__ = "2.0.0"

from .exceptions import (  # noqa: E402
    AdmissionRejected,
    DelayrConfigError,
    DelayrError,
    DelayrRunnerError,
    DelayrStoreError,
    DelayrValidationError,
    InvalidRunTransition,
)

__all__ = [
    "__version__",
    "AdmissionRejected",
    "DelayrConfigError",
    "DelayrError",
    "DelayrRunnerError",
    "DelayrStoreError",
    "DelayrValidationError",
    "InvalidRunTransition",
]
