"""Rich live progress view for a run in flight."""

from __future__ import annotations

import time
from typing import Sequence

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .analytics import compute_percentiles
from .models import Run, Sample
from .report import format_latency


def _current_endpoint(run: Run, done: int) -> tuple[int, str]:
    """1-based index and label of the endpoint being probed after ``done`` samples."""
    count = run.parameters.request_count
    endpoints = run.parameters.endpoints
    idx = min(done // count, len(endpoints) - 1)
    ep = endpoints[idx]
    return idx + 1, f"{ep.method.value} {ep.label}"


def build_progress_table(run: Run, samples: Sequence[Sample]) -> Table:
    """Single Rich grid with progress and running latency figures."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")

    done = len(samples)
    expected = run.expected_samples
    idx, label = _current_endpoint(run, done)
    table.add_row("Status", run.status.value)
    table.add_row("Endpoint", f"{idx}/{len(run.parameters.endpoints)} {label}")
    table.add_row("Requests", f"{done}/{expected}")

    if samples:
        last = samples[-1]
        pct = compute_percentiles([s.latency_ms for s in samples], (50, 95))
        errors = sum(1 for s in samples if s.is_error)
        table.add_row("Last", f"{last.status_code} in {format_latency(last.latency_ms)}")
        table.add_row("p50 so far", format_latency(pct[50]))
        table.add_row("p95 so far", format_latency(pct[95]))
        table.add_row("Errors", f"{errors} ({100.0 * errors / done:.1f}%)")
    else:
        table.add_row("Last", "-")
        table.add_row("p50 so far", "-")
        table.add_row("p95 so far", "-")
        table.add_row("Errors", "-")
    return table


def create_live_panel(run: Run, samples: Sequence[Sample], start_time: float) -> Panel:
    """Create Rich Panel for live display."""
    elapsed = time.perf_counter() - start_time if start_time else 0.0
    title = Text()
    title.append("delayr ", style="bold magenta")
    title.append(f"| run {run.slug} | {elapsed:.1f}s", style="dim")
    return Panel(build_progress_table(run, samples), title=title, border_style="blue")


def progress_line(run: Run, samples: Sequence[Sample], start_time: float) -> str:
    """One-line progress for non-TTY output (CI logs, pipes)."""
    elapsed = time.perf_counter() - start_time if start_time else 0.0
    done = len(samples)
    errors = sum(1 for s in samples if s.is_error)
    last = f" last={format_latency(samples[-1].latency_ms)}" if samples else ""
    return f"delayr | {elapsed:.1f}s | requests={done}/{run.expected_samples} errors={errors}{last}\n"
