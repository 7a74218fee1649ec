"""Probe executor: one timed HTTP request in, one Sample out.

This module provides:
- execute_probe: single request execution with timing and outcome classification
- create_client: async HTTP client factory for a run
- payload_bytes: serialized request body for an endpoint

execute_probe never raises for probe outcomes. An HTTP 500 is an observed
data point; a refused connection or a timeout becomes a Sample with
status_code 0 and an error message. Exactly one physical request is sent per
probe: no retries, and redirects are not followed unless the client says so.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any

import httpx
import orjson

from .logging_config import get_logger
from .models import EndpointSpec, Sample

logger = get_logger("probe")

DEFAULT_TIMEOUT_MS = 30_000
# Sequential probes never need more than a couple of sockets per host.
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_KEEPALIVE_EXPIRY = 30.0
NS_TO_MS = 1_000_000
JSON_CONTENT_TYPE = "application/json"


def payload_bytes(endpoint: EndpointSpec) -> bytes | None:
    """Serialized body for the endpoint, or None when the method carries none.

    str payloads are sent as UTF-8 text, bytes as-is, anything else as JSON.
    """
    if not endpoint.has_body:
        return None
    payload = endpoint.payload
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return orjson.dumps(payload)


def _prepare_headers(endpoint: EndpointSpec, body: bytes | None) -> dict[str, str]:
    headers = dict(endpoint.headers)
    if body is not None and not isinstance(endpoint.payload, (str, bytes)):
        if "content-type" not in {k.lower() for k in headers}:
            headers["Content-Type"] = JSON_CONTENT_TYPE
    return headers


def _describe_failure(exc: BaseException, timeout_ms: float | None) -> str:
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        if timeout_ms is not None:
            return f"Request timed out after {timeout_ms:.0f} ms"
        return f"Request timed out: {exc}"
    if isinstance(exc, httpx.ConnectError):
        return f"Connection failed: {exc}"
    if isinstance(exc, httpx.RequestError):
        return f"Request error: {exc}"
    return f"Unexpected error: {type(exc).__name__}: {exc}"


def _client_timeout_ms(client: Any) -> float | None:
    timeout = getattr(client, "timeout", None)
    read = getattr(timeout, "read", None)
    if isinstance(read, (int, float)):
        return read * 1000
    return None


async def execute_probe(
    client: httpx.AsyncClient,
    endpoint: EndpointSpec,
    request_number: int,
    total: int | None = None,
    run_id: str = "",
    timeout_ms: float | None = None,
) -> Sample:
    """Execute a single HTTP request and return its Sample.

    Args:
        client: Async HTTP client
        endpoint: Target to probe
        request_number: 1-based position within the endpoint's probes (logging only)
        total: Probes planned for this endpoint (logging only)
        run_id: Run the sample belongs to
        timeout_ms: Deadline for the whole request, body included. Defaults to
            the client's read timeout, which httpx only applies per phase.

    Returns:
        Sample with latency, sizes, status code and error message if any.

    Note:
        Never raises for network or HTTP failures; those are recorded in the
        Sample. Latency is measured with perf_counter_ns around the dispatch
        only, and is recorded on failure too.
    """
    progress = f"[{request_number}/{total}]" if total else f"[{request_number}]"
    method = endpoint.method.value
    request_size = 0
    start_ns: int | None = None
    if timeout_ms is None:
        timeout_ms = _client_timeout_ms(client)
    deadline = timeout_ms / 1000.0 if timeout_ms is not None else None
    try:
        body = payload_bytes(endpoint)
        request_size = len(body) if body is not None else 0
        headers = _prepare_headers(endpoint, body)

        start_ns = time.perf_counter_ns()
        r = await asyncio.wait_for(
            client.request(method, endpoint.url, headers=headers, content=body), timeout=deadline
        )
        elapsed_ms = (time.perf_counter_ns() - start_ns) / NS_TO_MS

        logger.debug("%s %s %s - %d - %.2fms", progress, method, endpoint.url, r.status_code, elapsed_ms)
        return Sample(
            run_id=run_id,
            endpoint_url=endpoint.url,
            method=method,
            latency_ms=elapsed_ms,
            request_size_bytes=request_size,
            response_size_bytes=len(r.content or b""),
            status_code=r.status_code,
            created_at=datetime.now(timezone.utc),
        )
    except Exception as e:  # noqa: BLE001
        elapsed_ms = (time.perf_counter_ns() - start_ns) / NS_TO_MS if start_ns is not None else 0.0
        message = _describe_failure(e, timeout_ms)
        logger.warning("%s %s %s - %s", progress, method, endpoint.url, message)
        return Sample(
            run_id=run_id,
            endpoint_url=endpoint.url,
            method=method,
            latency_ms=elapsed_ms,
            request_size_bytes=request_size,
            response_size_bytes=0,
            status_code=0,
            created_at=datetime.now(timezone.utc),
            error_message=message,
        )


def create_client(
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    http2: bool = False,
    follow_redirects: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the async HTTP client for one run.

    Args:
        timeout_ms: Per-request timeout in milliseconds (connect, read, write and pool)
        http2: Negotiate HTTP/2 where the server supports it
        follow_redirects: Follow 3xx responses; off so one probe is one request
        transport: Custom transport (tests use httpx.MockTransport)

    Returns:
        Configured AsyncClient ready for use as async context manager
    """
    limits = httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_CONNECTIONS,
        keepalive_expiry=DEFAULT_KEEPALIVE_EXPIRY,
    )
    return httpx.AsyncClient(
        http2=http2,
        timeout=timeout_ms / 1000.0,
        limits=limits,
        follow_redirects=follow_redirects,
        transport=transport,
    )
