"""Data models for delayr.

Samples are the most allocated objects during a run; they are frozen
slotted dataclasses. Derived analytics types are plain slotted dataclasses
and are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class HttpMethod(str, Enum):
    """HTTP methods a probe may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def carries_body(self) -> bool:
        return self in _BODY_METHODS


_BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH})


class RunStatus(str, Enum):
    """Run lifecycle. Forward-only: pending -> running -> completed | failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)

    def can_transition_to(self, target: "RunStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class EndpointSpec:
    """One target of a run. Immutable once a run starts.

    The method tags the variant: payload is only meaningful when
    ``method.carries_body``; validation in :mod:`delayr.config` rejects a
    payload on GET/DELETE.
    """

    url: str
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = field(default_factory=dict)
    payload: Any = None
    name: str | None = None

    @property
    def has_body(self) -> bool:
        return self.method.carries_body and self.payload is not None

    @property
    def label(self) -> str:
        return self.name or self.url

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"url": self.url, "method": self.method.value}
        if self.headers:
            out["headers"] = dict(self.headers)
        if self.payload is not None:
            out["payload"] = self.payload.decode("utf-8", "replace") if isinstance(self.payload, bytes) else self.payload
        if self.name:
            out["name"] = self.name
        return out


@dataclass(frozen=True, slots=True)
class RunParameters:
    """Endpoints (in probe order) and probes per endpoint."""

    endpoints: tuple[EndpointSpec, ...]
    request_count: int = 50

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoints": [e.to_dict() for e in self.endpoints],
            "requestCount": self.request_count,
        }


@dataclass(slots=True)
class Run:
    """A bounded execution of probes with its own lifecycle and shareable slug."""

    id: str
    slug: str
    parameters: RunParameters
    status: RunStatus
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def expected_samples(self) -> int:
        return len(self.parameters.endpoints) * self.parameters.request_count

    def to_dict(self) -> dict[str, Any]:
        params = self.parameters.to_dict()
        return {
            "id": self.id,
            "slug": self.slug,
            "endpoints": params["endpoints"],
            "requestCount": params["requestCount"],
            "status": self.status.value,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class Sample:
    """Recorded outcome of one probe. status_code 0 means no HTTP response."""

    run_id: str
    endpoint_url: str
    method: str
    latency_ms: float
    request_size_bytes: int
    response_size_bytes: int
    status_code: int
    created_at: datetime
    error_message: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status_code == 0 or self.status_code >= 400

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "endpoint": self.endpoint_url,
            "method": self.method,
            "latency_ms": self.latency_ms,
            "request_size_bytes": self.request_size_bytes,
            "response_size_bytes": self.response_size_bytes,
            "status_code": self.status_code,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True)
class AnalyticsResult:
    """Latency statistics for one (endpoint, method) group."""

    endpoint: str
    method: str
    p50: float
    p95: float
    p99: float
    min: float
    max: float
    avg: float
    std_dev: float
    avg_payload_size: int
    request_count: int
    error_count: int
    error_rate: float
    success_rate: float
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "endpoint": self.endpoint,
            "method": self.method,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "stdDev": self.std_dev,
            "avg_payload_size": self.avg_payload_size,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "error_rate": self.error_rate,
            "success_rate": self.success_rate,
        }
        if self.name:
            out["name"] = self.name
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalyticsResult":
        """Inverse of to_dict; used to load a baseline written by ``delayr -o json``."""
        return cls(
            endpoint=str(data["endpoint"]),
            method=str(data["method"]),
            p50=float(data["p50"]),
            p95=float(data["p95"]),
            p99=float(data["p99"]),
            min=float(data.get("min", 0.0)),
            max=float(data.get("max", 0.0)),
            avg=float(data.get("avg", 0.0)),
            std_dev=float(data.get("stdDev", 0.0)),
            avg_payload_size=int(data.get("avg_payload_size", 0)),
            request_count=int(data.get("request_count", 0)),
            error_count=int(data.get("error_count", 0)),
            error_rate=float(data.get("error_rate", 0.0)),
            success_rate=float(data.get("success_rate", 100.0)),
            name=data.get("name"),
        )


@dataclass(slots=True)
class PayloadBucket:
    """p95 latency of POST samples whose request size falls in [low, high)."""

    bucket: str
    p95: float
    request_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "p95": self.p95, "request_count": self.request_count}


@dataclass(slots=True)
class HistogramBucket:
    """Count of samples whose latency falls in [low, high) ms."""

    bucket: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "count": self.count}


@dataclass(slots=True)
class LatencyChange:
    """Percentage change of one group's percentiles against a baseline."""

    endpoint: str
    method: str
    p50_change: float
    p95_change: float
    p99_change: float
    improved: bool
    regressed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "p50Change": self.p50_change,
            "p95Change": self.p95_change,
            "p99Change": self.p99_change,
            "improved": self.improved,
            "regressed": self.regressed,
        }


@dataclass(slots=True)
class Thresholds:
    """Optional latency ceilings (ms) a CI run asserts against."""

    p50: float | None = None
    p95: float | None = None
    p99: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.p50 is None and self.p95 is None and self.p99 is None


@dataclass(slots=True)
class AssertionResult:
    """Outcome of checking one percentile of one group against a ceiling."""

    metric: str
    endpoint: str
    method: str
    expected: float
    actual: float
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.metric,
            "endpoint": self.endpoint,
            "method": self.method,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
        }


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None
