"""CLI entry point for delayr.

Exit codes:
    0 - run completed and every assertion passed (or none were given)
    1 - a latency assertion failed
    2 - error (invalid input, config, or the run itself failed)

Latency-sensitive defaults:
- Uses uvloop when installed
- GC disabled while probing so collection pauses do not land in samples
"""

from __future__ import annotations

import argparse
import asyncio
import gc
import sys
import time
from dataclasses import dataclass
from typing import Any, Coroutine

_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

import orjson
from rich.console import Console
from rich.live import Live

from . import __version__
from .analytics import compare_results, evaluate_thresholds
from .config import (
    DEFAULT_REQUEST_COUNT,
    RunFile,
    load_run_file,
    load_settings,
    parse_endpoint,
    validate_run_parameters,
)
from .dashboard import create_live_panel, progress_line
from .exceptions import DelayrError
from .logging_config import get_logger
from .models import RunParameters, RunStatus, Thresholds
from .probe import create_client
from .report import (
    build_json_payload,
    load_baseline,
    print_table_report,
    render_json,
    render_markdown,
    write_json_report,
    write_junit_report,
)
from .runner import RunController, RunReport
from .store import InMemoryRunStore

logger = get_logger("cli")

EXIT_OK = 0
EXIT_ASSERTION_FAILED = 1
EXIT_ERROR = 2

LIVE_REFRESH_PER_SEC = 4
PROGRESS_POLL_SEC = 0.25
STREAMING_FALLBACK_INTERVAL_SEC = 1.0
OUTPUT_FORMATS = ("table", "json", "markdown")


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run coroutine on uvloop when available, with GC paused for the duration."""
    gc_was_enabled = gc.isenabled()
    gc.disable()
    try:
        if _HAS_UVLOOP:
            return uvloop.run(coro)
        return asyncio.run(coro)
    finally:
        if gc_was_enabled:
            gc.enable()
        gc.collect()


def _parse_headers(header_list: list[str] | None) -> dict[str, str]:
    """``["Name: Value", ...]`` -> dict. Entries without a colon are ignored."""
    if not header_list:
        return {}
    out: dict[str, str] = {}
    for h in header_list:
        if ":" in h:
            k, _, v = h.partition(":")
            out[k.strip()] = v.strip()
    return out


def _parse_payload(raw: str | None) -> Any:
    """JSON body from -d; anything that is not JSON is wrapped as ``{"data": raw}``."""
    if raw is None:
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return {"data": raw}


def _stderr_is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def _build_run_file(args: argparse.Namespace) -> RunFile:
    """Run file from -f, or from -u/positional URLs; CLI flags override file values."""
    urls = list(args.urls or [])
    if args.url:
        urls.append(args.url)

    if args.config:
        run_file = load_run_file(args.config)
    elif urls:
        headers = _parse_headers(args.headers)
        payload = _parse_payload(args.data)
        endpoints = tuple(
            parse_endpoint({"url": u, "method": args.method, "headers": headers, "payload": payload})
            for u in urls
        )
        run_file = RunFile(parameters=RunParameters(endpoints=endpoints, request_count=DEFAULT_REQUEST_COUNT))
    else:
        raise DelayrError("No URLs specified")

    params = run_file.parameters
    if args.count is not None:
        params = RunParameters(endpoints=params.endpoints, request_count=args.count)
    validate_run_parameters(params)

    base = run_file.thresholds
    thresholds = Thresholds(
        p50=args.assert_p50 if args.assert_p50 is not None else base.p50,
        p95=args.assert_p95 if args.assert_p95 is not None else base.p95,
        p99=args.assert_p99 if args.assert_p99 is not None else base.p99,
    )
    timeout_ms = args.timeout_ms if args.timeout_ms is not None else run_file.timeout_ms
    return RunFile(parameters=params, thresholds=thresholds, timeout_ms=timeout_ms)


@dataclass(slots=True)
class _Progress:
    mode: str  # "live" | "lines" | "off"
    console: Console


async def _execute(run_file: RunFile, progress: _Progress) -> RunReport:
    """Run to completion while rendering progress from the store's partial samples."""
    settings = load_settings()
    timeout_ms = run_file.timeout_ms or settings.request_timeout_ms
    store = InMemoryRunStore()
    controller = RunController(
        store,
        probe_timeout_ms=timeout_ms,
        client_factory=lambda t: create_client(
            t, http2=settings.http2, follow_redirects=settings.follow_redirects
        ),
    )
    run = await controller.create_run(run_file.parameters)
    if progress.mode != "off":
        progress.console.print(
            f"\n[bold cyan]delayr[/] - Running {run.parameters.request_count} requests per endpoint"
        )
    start_time = time.perf_counter()
    task = controller.start_run(run)

    if progress.mode == "live":
        with Live(
            create_live_panel(run, [], start_time),
            console=progress.console,
            refresh_per_second=LIVE_REFRESH_PER_SEC,
            transient=True,
        ) as live:
            while not task.done():
                samples = await store.list_samples(run.id)
                live.update(create_live_panel(run, samples, start_time))
                await asyncio.sleep(PROGRESS_POLL_SEC)
    elif progress.mode == "lines":
        while not task.done():
            samples = await store.list_samples(run.id)
            sys.stderr.write(progress_line(run, samples, start_time))
            sys.stderr.flush()
            await asyncio.wait({task}, timeout=STREAMING_FALLBACK_INTERVAL_SEC)

    finished = await controller.wait(run.id)
    return await controller.run_report(finished or run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="delayr",
        description="API latency testing for CI/CD. Sends sequential requests to each endpoint "
        "and reports p50/p95/p99 latency, slowest endpoint first.",
    )
    parser.add_argument("url", nargs="?", help="URL to test (same as -u)")
    parser.add_argument("-u", "--url", action="append", dest="urls", metavar="URL", help="URL to test (repeatable)")
    parser.add_argument("-m", "--method", default="GET", help="HTTP method: GET, POST, PUT, PATCH, DELETE (default: GET)")
    parser.add_argument("-c", "--count", type=int, default=None, help=f"Requests per endpoint (default: {DEFAULT_REQUEST_COUNT})")
    parser.add_argument("-H", "--header", action="append", dest="headers", metavar="HEADER", help='Add header, "Name: Value" (repeatable)')
    parser.add_argument("-d", "--data", default=None, metavar="JSON", help="Request body for POST/PUT/PATCH")
    parser.add_argument("-f", "--config", default=None, metavar="PATH", help="YAML/JSON run file with endpoints and thresholds")
    parser.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default="table", help="Output format (default: table)")
    parser.add_argument("--json", metavar="PATH", dest="json_path", help="Also write JSON results to PATH")
    parser.add_argument("--junit", metavar="PATH", dest="junit_path", help="Also write JUnit XML to PATH (for CI)")
    parser.add_argument("--baseline", metavar="PATH", help="JSON results of an earlier run to compare against")
    parser.add_argument("--timeout-ms", type=float, default=None, metavar="MS", dest="timeout_ms", help="Per-request timeout (default: 30000)")
    parser.add_argument("--assert-p50", type=float, default=None, metavar="MS", dest="assert_p50", help="Fail if p50 latency exceeds MS")
    parser.add_argument("--assert-p95", type=float, default=None, metavar="MS", dest="assert_p95", help="Fail if p95 latency exceeds MS")
    parser.add_argument("--assert-p99", type=float, default=None, metavar="MS", dest="assert_p99", help="Fail if p99 latency exceeds MS")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    parser.add_argument("--no-live", action="store_true", help="Plain progress lines instead of the live panel")
    parser.add_argument("-v", "--version", action="version", version=f"delayr {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    err_console = Console(stderr=True)

    def handle_error(e: BaseException) -> int:
        if isinstance(e, DelayrError):
            err_console.print(f"[red]Error: {e.message}[/]")
            return EXIT_ERROR
        if isinstance(e, (FileNotFoundError, ValueError)):
            err_console.print(f"[red]Error: {e}[/]")
            return EXIT_ERROR
        logger.exception("Unexpected error")
        err_console.print("[red]Error: An unexpected error occurred. Check logs for details.[/]")
        return EXIT_ERROR

    try:
        run_file = _build_run_file(args)
        baseline = load_baseline(args.baseline) if args.baseline else None
    except (DelayrError, FileNotFoundError, ValueError) as e:
        return handle_error(e)

    if args.quiet:
        mode = "off"
    elif args.no_live or not _stderr_is_tty():
        mode = "lines"
    else:
        mode = "live"

    try:
        report = _run_async(_execute(run_file, _Progress(mode=mode, console=err_console)))
    except KeyboardInterrupt:
        err_console.print("\nInterrupted.")
        return 130
    except Exception as e:
        return handle_error(e)

    assertions = evaluate_thresholds(report.results, run_file.thresholds)
    comparison = compare_results(baseline, report.results) if baseline is not None else None
    payload = build_json_payload(report.results, assertions, report.histogram, comparison, run=report.run)

    if args.output == "json":
        print(render_json(payload))
    elif args.output == "markdown":
        print(render_markdown(report.results, assertions, report.histogram, comparison))
    else:
        print_table_report(Console(), report.results, assertions, comparison)

    try:
        if args.json_path:
            write_json_report(args.json_path, payload)
        if args.junit_path:
            write_junit_report(args.junit_path, report.results, assertions)
    except OSError as e:
        return handle_error(DelayrError(f"Cannot write report: {e}", original_error=e))

    if report.run.status is RunStatus.FAILED:
        err_console.print(f"[red]Error: run {report.run.slug} failed after {report.sample_count} requests[/]")
        return EXIT_ERROR
    if any(not a.passed for a in assertions):
        return EXIT_ASSERTION_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
