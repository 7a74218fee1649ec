"""Pytest fixtures for delayr tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from delayr.models import EndpointSpec, HttpMethod, RunParameters, Sample


@pytest.fixture
def tmp_run_file() -> Path:
    """Write a two-endpoint run file with thresholds to a temp file."""
    content = """
requestCount: 5
timeout_ms: 2000
endpoints:
  - url: https://api.example.com/users
    name: list users
  - url: https://api.example.com/users
    method: POST
    headers:
      Authorization: Bearer token
    payload:
      name: alice
thresholds:
  p95: 250
  p99: 400
"""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        path = Path(f.name)
    yield path
    path.unlink(missing_ok=True)


@pytest.fixture
def tmp_run_file_invalid_yaml() -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write("endpoints: [\n  - url: broken")
        path = Path(f.name)
    yield path
    path.unlink(missing_ok=True)


@pytest.fixture
def make_sample() -> Callable[..., Sample]:
    """Factory for samples; latency and status are the usual knobs."""

    def _make(
        latency_ms: float = 10.0,
        status_code: int = 200,
        endpoint_url: str = "https://api.example.com/a",
        method: str = "GET",
        request_size_bytes: int = 0,
        run_id: str = "run-1",
        error_message: str | None = None,
    ) -> Sample:
        return Sample(
            run_id=run_id,
            endpoint_url=endpoint_url,
            method=method,
            latency_ms=latency_ms,
            request_size_bytes=request_size_bytes,
            response_size_bytes=2,
            status_code=status_code,
            created_at=datetime.now(timezone.utc),
            error_message=error_message,
        )

    return _make


@pytest.fixture
def single_get_params() -> RunParameters:
    return RunParameters(
        endpoints=(EndpointSpec(url="https://api.example.com/a", method=HttpMethod.GET),),
        request_count=5,
    )
