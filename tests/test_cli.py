"""Unit tests for CLI (argument helpers, main exit codes)."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from delayr import cli
from delayr.cli import _build_run_file, _parse_headers, _parse_payload, build_parser, main
from delayr.exceptions import DelayrError
from delayr.models import HttpMethod
from delayr.probe import create_client


def _transport(status: int = 200):
    return httpx.MockTransport(lambda request: httpx.Response(status, content=b"{}"))


def _patched_client(status: int = 200):
    def factory(timeout_ms, http2=False, follow_redirects=False):
        return create_client(timeout_ms, transport=_transport(status))

    return patch.object(cli, "create_client", side_effect=factory)


def test_parse_headers() -> None:
    assert _parse_headers(None) == {}
    assert _parse_headers(["Authorization: Bearer a:b", "novalue", " X-Id :  7 "]) == {
        "Authorization": "Bearer a:b",
        "X-Id": "7",
    }


def test_parse_payload() -> None:
    assert _parse_payload(None) is None
    assert _parse_payload('{"a": 1}') == {"a": 1}
    assert _parse_payload("plain text") == {"data": "plain text"}


def test_build_run_file_from_flags() -> None:
    args = build_parser().parse_args(
        ["-u", "https://api.example.com/a", "-u", "https://api.example.com/b", "-m", "post", "-d", '{"x":1}',
         "-c", "3", "--assert-p95", "200"]
    )
    run_file = _build_run_file(args)
    params = run_file.parameters
    assert params.request_count == 3
    assert [e.url for e in params.endpoints] == ["https://api.example.com/a", "https://api.example.com/b"]
    assert all(e.method is HttpMethod.POST for e in params.endpoints)
    assert params.endpoints[0].payload == {"x": 1}
    assert run_file.thresholds.p95 == 200
    assert run_file.thresholds.p99 is None


def test_build_run_file_flags_override_file(tmp_run_file: Path) -> None:
    args = build_parser().parse_args(["-f", str(tmp_run_file), "-c", "2", "--assert-p99", "900", "--timeout-ms", "100"])
    run_file = _build_run_file(args)
    assert run_file.parameters.request_count == 2
    assert run_file.thresholds.p95 == 250
    assert run_file.thresholds.p99 == 900
    assert run_file.timeout_ms == 100


def test_build_run_file_requires_urls() -> None:
    with pytest.raises(DelayrError):
        _build_run_file(build_parser().parse_args([]))


def test_main_version_exits_zero() -> None:
    with patch.object(sys, "argv", ["delayr", "--version"]):
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 0


def test_main_help_exits_zero() -> None:
    with patch.object(sys, "argv", ["delayr", "--help"]):
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 0


def test_main_no_urls_exits_two() -> None:
    with patch.object(sys, "argv", ["delayr"]):
        assert main() == 2


def test_main_missing_config_exits_two() -> None:
    with patch.object(sys, "argv", ["delayr", "-f", "/nonexistent/run.yaml"]):
        assert main() == 2


def test_main_invalid_url_exits_two() -> None:
    with patch.object(sys, "argv", ["delayr", "not-a-url"]):
        assert main() == 2


def test_main_count_out_of_range_exits_two() -> None:
    assert main(["https://api.example.com", "-c", "500", "-q"]) == 2


def test_main_json_output(capsys) -> None:
    with _patched_client():
        code = main(["https://api.example.com/health", "-c", "3", "-q", "-o", "json"])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["passed"] is True
    assert data["results"][0]["request_count"] == 3
    assert data["results"][0]["endpoint"] == "https://api.example.com/health"
    assert data["run"]["status"] == "completed"


def test_main_failed_assertion_exits_one(tmp_path: Path) -> None:
    junit = tmp_path / "junit.xml"
    with _patched_client():
        code = main(
            ["https://api.example.com/health", "-c", "2", "-q", "--assert-p95", "0", "--junit", str(junit)]
        )
    assert code == 1
    assert "<failure" in junit.read_text(encoding="utf-8")


def test_main_markdown_with_json_file(tmp_path: Path, capsys) -> None:
    out = tmp_path / "results.json"
    with _patched_client(status=500):
        code = main(["https://api.example.com/health", "-c", "2", "--no-live", "-o", "markdown", "--json", str(out)])
    assert code == 0
    assert "## API Latency Results" in capsys.readouterr().out
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["results"][0]["error_rate"] == 100.0


def test_main_baseline_comparison(tmp_path: Path, capsys) -> None:
    baseline = tmp_path / "baseline.json"
    with _patched_client():
        assert main(["https://api.example.com/health", "-c", "2", "-q", "--json", str(baseline)]) == 0
    capsys.readouterr()
    with _patched_client():
        code = main(["https://api.example.com/health", "-c", "2", "-q", "-o", "json", "--baseline", str(baseline)])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert len(data["comparison"]) == 1
    assert data["comparison"][0]["endpoint"] == "https://api.example.com/health"


def test_main_missing_baseline_exits_two(tmp_path: Path) -> None:
    assert main(["https://api.example.com", "-q", "--baseline", str(tmp_path / "missing.json")]) == 2
