"""Input validation, YAML run files and environment settings for delayr."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .exceptions import DelayrConfigError, DelayrValidationError
from .logging_config import get_logger
from .models import EndpointSpec, HttpMethod, RunParameters, Thresholds

logger = get_logger("config")

MAX_ENDPOINTS = 10
MIN_REQUEST_COUNT = 1
MAX_REQUEST_COUNT = 200
DEFAULT_REQUEST_COUNT = 50
DEFAULT_REQUEST_TIMEOUT_MS = 30_000
DEFAULT_RATE_LIMIT_REQUESTS = 30
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 3600.0
DEFAULT_PORT = 3001

_ALLOWED_SCHEMES = ("http", "https")


def validate_url(url: str) -> str:
    """Return the stripped URL if absolute (http/https with a host). Raises DelayrValidationError."""
    if not isinstance(url, str) or not url.strip():
        raise DelayrValidationError("Each endpoint must have a valid url string")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES or not parsed.netloc:
        raise DelayrValidationError(f"Invalid URL: {url}", context={"url": url})
    return url


def parse_method(raw: Any) -> HttpMethod:
    if isinstance(raw, HttpMethod):
        return raw
    value = str(raw or "GET").strip().upper()
    try:
        return HttpMethod(value)
    except ValueError:
        allowed = ", ".join(m.value for m in HttpMethod)
        raise DelayrValidationError(
            f"Each endpoint must have method: {allowed}",
            context={"method": raw},
        ) from None


def parse_endpoint(raw: Mapping[str, Any]) -> EndpointSpec:
    """Build a validated EndpointSpec from a mapping (run file, API body, CLI flags)."""
    if not isinstance(raw, Mapping):
        raise DelayrValidationError("Each endpoint must be an object with at least a url")
    url = validate_url(raw.get("url"))  # type: ignore[arg-type]
    method = parse_method(raw.get("method"))

    headers = raw.get("headers") or {}
    if not isinstance(headers, Mapping):
        raise DelayrValidationError("Headers must be a valid object", context={"url": url})

    payload = raw.get("payload")
    if payload is not None and not method.carries_body:
        raise DelayrValidationError(
            f"{method.value} requests cannot carry a payload",
            context={"url": url},
        )

    name = raw.get("name")
    return EndpointSpec(
        url=url,
        method=method,
        headers={str(k): str(v) for k, v in headers.items()},
        payload=payload,
        name=str(name) if name else None,
    )


def validate_run_parameters(params: RunParameters) -> None:
    """Validate RunParameters bounds. Raises DelayrValidationError if invalid."""
    if not params.endpoints:
        raise DelayrValidationError("At least one endpoint is required")
    if len(params.endpoints) > MAX_ENDPOINTS:
        raise DelayrValidationError(
            f"Maximum {MAX_ENDPOINTS} endpoints per test run",
            context={"endpoints": len(params.endpoints)},
        )
    if isinstance(params.request_count, bool) or not isinstance(params.request_count, int):
        raise DelayrValidationError("Request count must be an integer")
    if not MIN_REQUEST_COUNT <= params.request_count <= MAX_REQUEST_COUNT:
        raise DelayrValidationError(
            f"Request count must be between {MIN_REQUEST_COUNT} and {MAX_REQUEST_COUNT}",
            context={"request_count": params.request_count},
        )
    for endpoint in params.endpoints:
        validate_url(endpoint.url)
        if endpoint.payload is not None and not endpoint.method.carries_body:
            raise DelayrValidationError(
                f"{endpoint.method.value} requests cannot carry a payload",
                context={"url": endpoint.url},
            )


def parse_run_parameters(raw: Mapping[str, Any]) -> RunParameters:
    """Build validated RunParameters from ``{endpoints: [...], requestCount|request_count: int}``."""
    endpoints_raw = raw.get("endpoints")
    if not isinstance(endpoints_raw, list) or not endpoints_raw:
        raise DelayrValidationError(
            "Expected { endpoints: Array<{url, method, headers?, payload?}>, requestCount?: number }"
        )
    count_raw = raw.get("requestCount", raw.get("request_count", DEFAULT_REQUEST_COUNT))
    if isinstance(count_raw, bool):
        raise DelayrValidationError("Request count must be an integer", context={"request_count": count_raw})
    try:
        request_count = int(count_raw)
    except (TypeError, ValueError):
        raise DelayrValidationError("Request count must be an integer", context={"request_count": count_raw}) from None
    if isinstance(count_raw, float) and not count_raw.is_integer():
        raise DelayrValidationError("Request count must be an integer", context={"request_count": count_raw})

    params = RunParameters(
        endpoints=tuple(parse_endpoint(e) for e in endpoints_raw),
        request_count=request_count,
    )
    validate_run_parameters(params)
    return params


@dataclass(slots=True)
class RunFile:
    """A run definition loaded from YAML: what to probe and what to assert."""

    parameters: RunParameters
    thresholds: Thresholds = field(default_factory=Thresholds)
    timeout_ms: float | None = None


def load_run_file(path: str | Path) -> RunFile:
    """Load a run definition from a YAML (or JSON) file.

    Args:
        path: Path to the run file

    Returns:
        RunFile with validated parameters

    Raises:
        DelayrConfigError: If file not found or not parseable
        DelayrValidationError: If the endpoints or counts are invalid
    """
    p = Path(path)
    if not p.exists():
        raise DelayrConfigError(f"Run file not found: {path}", context={"path": str(path)})

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse run file")
        raise DelayrConfigError(
            f"Invalid YAML syntax in run file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    except OSError as e:
        logger.exception("Failed to read run file")
        raise DelayrConfigError(
            f"Cannot read run file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e

    if not isinstance(raw, dict):
        raise DelayrConfigError(
            "Run file must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )

    try:
        parameters = parse_run_parameters(raw)
    except DelayrValidationError as e:
        e.with_context(path=str(path))
        raise

    thresholds_raw = raw.get("thresholds") or {}
    if not isinstance(thresholds_raw, dict):
        raise DelayrConfigError("thresholds must be an object", context={"path": str(path)})
    thresholds = Thresholds(
        p50=_optional_float(thresholds_raw, "p50"),
        p95=_optional_float(thresholds_raw, "p95"),
        p99=_optional_float(thresholds_raw, "p99"),
    )
    timeout_ms = _optional_float(raw, "timeout_ms")
    if timeout_ms is not None and timeout_ms <= 0:
        raise DelayrConfigError("timeout_ms must be > 0 when set", context={"path": str(path)})

    logger.debug(
        "Loaded run file: endpoints=%d, request_count=%d", len(parameters.endpoints), parameters.request_count
    )
    return RunFile(parameters=parameters, thresholds=thresholds, timeout_ms=timeout_ms)


def _optional_float(data: Mapping[str, Any], key: str) -> float | None:
    v = data.get(key)
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        raise DelayrConfigError(f"{key} must be a number", context={key: v}) from None


# --- Service settings (environment) ---

ENV_PREFIX = "DELAYR_"


@dataclass(slots=True)
class Settings:
    """Process-wide settings, read once from the environment."""

    request_timeout_ms: float = DEFAULT_REQUEST_TIMEOUT_MS
    rate_limit_requests: int = DEFAULT_RATE_LIMIT_REQUESTS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    base_url: str = f"http://localhost:{DEFAULT_PORT}"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    http2: bool = False
    follow_redirects: bool = False


def _env_number(env: Mapping[str, str], key: str, default: float, cast: type) -> Any:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise DelayrConfigError(f"{ENV_PREFIX}{key} must be a number", context={"value": raw}) from None
    if value <= 0:
        raise DelayrConfigError(f"{ENV_PREFIX}{key} must be > 0", context={"value": raw})
    return value


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from ``environ`` (defaults to ``os.environ``). Raises DelayrConfigError."""
    env = os.environ if environ is None else environ
    port = _env_number(env, "PORT", DEFAULT_PORT, int)
    return Settings(
        request_timeout_ms=_env_number(env, "REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS, float),
        rate_limit_requests=_env_number(env, "RATE_LIMIT_REQUESTS", DEFAULT_RATE_LIMIT_REQUESTS, int),
        rate_limit_window_seconds=_env_number(
            env, "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS, float
        ),
        base_url=(env.get(ENV_PREFIX + "BASE_URL") or f"http://localhost:{port}").rstrip("/"),
        host=env.get(ENV_PREFIX + "HOST") or "0.0.0.0",
        port=port,
        http2=_env_bool(env, "HTTP2", False),
        follow_redirects=_env_bool(env, "FOLLOW_REDIRECTS", False),
    )
