"""Unit tests for dashboard (build_progress_table, create_live_panel, progress_line)."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel

from delayr.dashboard import build_progress_table, create_live_panel, progress_line
from delayr.models import EndpointSpec, HttpMethod, Run, RunParameters, RunStatus


def _run(request_count: int = 2) -> Run:
    params = RunParameters(
        endpoints=(
            EndpointSpec(url="https://api.example.com/a"),
            EndpointSpec(url="https://api.example.com/b", method=HttpMethod.POST, name="create"),
        ),
        request_count=request_count,
    )
    return Run(
        id="run-1",
        slug="k3x9p2qa",
        parameters=params,
        status=RunStatus.RUNNING,
        created_at=datetime.now(timezone.utc),
    )


def _render(renderable) -> str:
    console = Console(record=True, width=120)
    console.print(renderable)
    return console.export_text()


def test_build_progress_table_empty() -> None:
    text = _render(build_progress_table(_run(), []))
    assert "0/4" in text
    assert "1/2 GET https://api.example.com/a" in text


def test_build_progress_table_moves_to_next_endpoint(make_sample) -> None:
    samples = [make_sample(latency_ms=10), make_sample(latency_ms=20), make_sample(status_code=500)]
    text = _render(build_progress_table(_run(), samples))
    assert "3/4" in text
    assert "2/2 POST create" in text
    assert "1 (33.3%)" in text


def test_build_progress_table_clamps_endpoint_index(make_sample) -> None:
    samples = [make_sample() for _ in range(4)]
    text = _render(build_progress_table(_run(), samples))
    assert "2/2 POST create" in text


def test_create_live_panel() -> None:
    panel = create_live_panel(_run(), [], time.perf_counter())
    assert isinstance(panel, Panel)
    assert "k3x9p2qa" in _render(panel)


def test_progress_line(make_sample) -> None:
    line = progress_line(_run(), [make_sample(latency_ms=12.5), make_sample(status_code=0)], time.perf_counter())
    assert line.endswith("\n")
    assert "requests=2/4" in line
    assert "errors=1" in line
    assert "last=" in line
