"""Rendering of analytics: Rich table, JSON, Markdown and JUnit XML."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import urlparse, urlunparse
from xml.dom import minidom

import orjson
from jinja2 import Environment, PackageLoader, select_autoescape
from rich.console import Console
from rich.table import Table

from . import __version__ as delayr_version
from .exceptions import DelayrConfigError
from .models import AnalyticsResult, AssertionResult, HistogramBucket, LatencyChange, Run

# p95 colour bands (ms)
LATENCY_GREEN_BELOW_MS = 100
LATENCY_YELLOW_BELOW_MS = 500
ENDPOINT_COLUMN_WIDTH = 48


def format_latency(ms: float) -> str:
    if ms < 1:
        return f"{ms:.3f}ms"
    if ms < 1000:
        return f"{ms:.2f}ms"
    return f"{ms / 1000:.2f}s"


def format_bytes(size: float) -> str:
    if size < 1024:
        return f"{size:.0f}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f}KB"
    return f"{size / (1024 * 1024):.2f}MB"


def latency_color(p95: float) -> str:
    if p95 < LATENCY_GREEN_BELOW_MS:
        return "green"
    if p95 < LATENCY_YELLOW_BELOW_MS:
        return "yellow"
    return "red"


def success_color(success_rate: float) -> str:
    if success_rate >= 99:
        return "green"
    if success_rate >= 95:
        return "yellow"
    return "red"


def mask_url(url: str, max_length: int = 120) -> str:
    """Drop query string and fragment so tokens in URLs do not end up in shared output."""
    if not url or not url.strip():
        return url
    parsed = urlparse(url)
    clean = urlunparse((parsed.scheme, parsed.netloc, parsed.path or "", "", "", ""))
    if len(clean) > max_length:
        clean = clean[: max_length - 3] + "..."
    return clean


def build_results_table(results: Iterable[AnalyticsResult]) -> Table:
    """Slowest-first results table, p95 and success rate colour coded."""
    table = Table(title="Results", title_justify="left", header_style="dim")
    table.add_column("Endpoint", max_width=ENDPOINT_COLUMN_WIDTH, overflow="ellipsis", no_wrap=True)
    table.add_column("Method")
    table.add_column("p50", justify="right")
    table.add_column("p95", justify="right")
    table.add_column("p99", justify="right")
    table.add_column("Avg size", justify="right")
    table.add_column("Success", justify="right")
    for r in results:
        table.add_row(
            r.name or mask_url(r.endpoint),
            r.method,
            format_latency(r.p50),
            f"[{latency_color(r.p95)}]{format_latency(r.p95)}[/]",
            format_latency(r.p99),
            format_bytes(r.avg_payload_size),
            f"[{success_color(r.success_rate)}]{r.success_rate:.1f}%[/]",
        )
    return table


def build_assertions_table(assertions: Iterable[AssertionResult]) -> Table:
    table = Table(title="Assertions", title_justify="left", show_header=False, box=None)
    table.add_column()
    table.add_column()
    for a in assertions:
        icon = "[green]✓[/]" if a.passed else "[red]✗[/]"
        comparison = "≤" if a.passed else ">"
        table.add_row(
            icon,
            f"{a.metric} for {mask_url(a.endpoint)}: {format_latency(a.actual)} {comparison} {format_latency(a.expected)}",
        )
    return table


def build_comparison_table(changes: Iterable[LatencyChange]) -> Table:
    table = Table(title="Compared to baseline", title_justify="left", header_style="dim")
    table.add_column("Endpoint", max_width=ENDPOINT_COLUMN_WIDTH, overflow="ellipsis", no_wrap=True)
    table.add_column("Method")
    table.add_column("p50", justify="right")
    table.add_column("p95", justify="right")
    table.add_column("p99", justify="right")
    for c in changes:
        style = "red" if c.regressed else ("green" if c.improved else "dim")
        table.add_row(
            mask_url(c.endpoint),
            c.method,
            f"{c.p50_change:+.1f}%",
            f"[{style}]{c.p95_change:+.1f}%[/]",
            f"{c.p99_change:+.1f}%",
        )
    return table


def print_table_report(
    console: Console,
    results: list[AnalyticsResult],
    assertions: list[AssertionResult],
    comparison: list[LatencyChange] | None = None,
) -> None:
    console.print()
    console.print(build_results_table(results))
    if comparison:
        console.print(build_comparison_table(comparison))
    if assertions:
        console.print(build_assertions_table(assertions))
        if all(a.passed for a in assertions):
            console.print("[bold green]All assertions passed![/]")
        else:
            console.print("[bold red]Assertions failed![/]")


def build_json_payload(
    results: list[AnalyticsResult],
    assertions: list[AssertionResult],
    histogram: list[HistogramBucket] | None = None,
    comparison: list[LatencyChange] | None = None,
    run: Run | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "version": delayr_version,
        "results": [r.to_dict() for r in results],
        "assertions": [a.to_dict() for a in assertions],
        "passed": all(a.passed for a in assertions),
    }
    if histogram is not None:
        payload["histogram"] = [h.to_dict() for h in histogram]
    if comparison is not None:
        payload["comparison"] = [c.to_dict() for c in comparison]
    if run is not None:
        payload["run"] = run.to_dict()
    return payload


def render_json(payload: dict[str, Any]) -> str:
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8")


def write_json_report(output_path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))


def load_baseline(path: str | Path) -> list[AnalyticsResult]:
    """Read the ``results`` of a JSON report written earlier by ``delayr -o json`` or ``--json``."""
    p = Path(path)
    try:
        data = orjson.loads(p.read_bytes())
    except FileNotFoundError as e:
        raise DelayrConfigError(f"Baseline file not found: {path}", context={"path": str(path)}) from e
    except orjson.JSONDecodeError as e:
        raise DelayrConfigError(
            f"Baseline is not valid JSON: {e}", context={"path": str(path)}, original_error=e
        ) from e
    rows = data.get("results") if isinstance(data, dict) else data
    if not isinstance(rows, list):
        raise DelayrConfigError("Baseline must contain a results list", context={"path": str(path)})
    try:
        return [AnalyticsResult.from_dict(row) for row in rows]
    except (KeyError, TypeError, ValueError) as e:
        raise DelayrConfigError(
            f"Baseline result row is malformed: {e}", context={"path": str(path)}, original_error=e
        ) from e


_env: Environment | None = None


def _template_env() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=PackageLoader("delayr", "templates"),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _env.filters["latency"] = format_latency
        _env.filters["bytes"] = format_bytes
        _env.filters["mask_url"] = mask_url
    return _env


def render_markdown(
    results: list[AnalyticsResult],
    assertions: list[AssertionResult],
    histogram: list[HistogramBucket] | None = None,
    comparison: list[LatencyChange] | None = None,
) -> str:
    template = _template_env().get_template("results.md.j2")
    return template.render(
        results=results,
        assertions=assertions,
        histogram=histogram or [],
        comparison=comparison or [],
        passed=all(a.passed for a in assertions),
    )


def write_junit_report(
    output_path: str | Path,
    results: list[AnalyticsResult],
    assertions: list[AssertionResult],
    suite_name: str = "latency",
) -> None:
    """JUnit XML for CI. One testcase per assertion; one per endpoint when nothing is asserted."""
    testsuite = ET.Element("testsuite", name=f"delayr.{suite_name}", errors="0", skipped="0")
    failures = 0
    if assertions:
        for a in assertions:
            tc = ET.SubElement(
                testsuite,
                "testcase",
                name=f"{a.metric} {a.method} {mask_url(a.endpoint)}",
                classname=f"delayr.{suite_name}",
            )
            if not a.passed:
                failures += 1
                failure = ET.SubElement(tc, "failure", message=f"{a.metric} threshold exceeded")
                failure.text = f"{a.metric} {format_latency(a.actual)} > {format_latency(a.expected)}"
    else:
        for r in results:
            tc = ET.SubElement(
                testsuite,
                "testcase",
                name=f"{r.method} {mask_url(r.endpoint)}",
                classname=f"delayr.{suite_name}",
            )
            out = ET.SubElement(tc, "system-out")
            out.text = (
                f"p50_ms={r.p50:.2f} p95_ms={r.p95:.2f} p99_ms={r.p99:.2f} "
                f"error_rate_pct={r.error_rate:.2f} requests={r.request_count}"
            )
    testsuite.set("tests", str(len(testsuite)))
    testsuite.set("failures", str(failures))

    root = ET.Element("testsuites")
    root.append(testsuite)
    xml_str = minidom.parseString(ET.tostring(root, encoding="unicode", method="xml")).toprettyxml(indent="  ")
    out_path = Path(output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(xml_str, encoding="utf-8")
