"""HTTP API: start runs, poll them, share them by slug.

  POST /api/run            Start a run (admission-gated per client address)
  GET  /api/run/{ref}      Run status, analytics and raw samples (slug or id)
  GET  /r/{slug}           Shareable view: run, analytics, histogram
  GET  /api/runs           Recent runs
  GET  /api/results        Analytics for one run
  GET  /api/raw            Raw samples for one run, optionally one endpoint
  GET  /api/histogram      Latency histogram for one run
  GET  /api/buckets        POST payload-size buckets for one run
  GET  /health             Liveness

Runs execute in the background: POST /api/run returns as soon as the run is
stored and its task is spawned, and results fill in while clients poll.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .admission import AdmissionGate
from .analytics import compute_payload_buckets
from .config import DEFAULT_REQUEST_COUNT, Settings, load_settings, parse_run_parameters
from .exceptions import AdmissionRejected, DelayrValidationError
from .logging_config import get_logger
from .models import Run
from .probe import create_client
from .runner import RunController
from .store import InMemoryRunStore, RunStore

logger = get_logger("api")

RECENT_RUNS_DEFAULT = 10
RECENT_RUNS_MAX = 50
RUN_BODY_SHAPE = "Expected { endpoints: Array<{url, method, headers?, payload?}>, requestCount?: number }"


class EndpointIn(BaseModel):
    url: str
    method: str = "GET"
    headers: dict[str, Any] | None = None
    payload: Any = None
    name: str | None = None


class RunRequest(BaseModel):
    endpoints: list[EndpointIn] = Field(default_factory=list)
    requestCount: Any = DEFAULT_REQUEST_COUNT


def _caller_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _share_url(settings: Settings, run: Run) -> str:
    return f"{settings.base_url}/r/{run.slug}"


def create_app(
    settings: Settings | None = None,
    store: RunStore | None = None,
    admission: AdmissionGate | None = None,
    controller: RunController | None = None,
) -> FastAPI:
    """Build the API app. Collaborators default to in-process implementations sized from settings."""
    settings = settings or load_settings()
    store = store or InMemoryRunStore()
    admission = admission or AdmissionGate(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    controller = controller or RunController(
        store,
        probe_timeout_ms=settings.request_timeout_ms,
        client_factory=lambda t: create_client(t, http2=settings.http2, follow_redirects=settings.follow_redirects),
        admission=admission,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("delayr API starting (base_url=%s)", settings.base_url)
        yield
        pending = controller.active_runs
        if pending:
            logger.info("Waiting for %d run(s) to finish before shutdown", len(pending))
        await controller.drain()

    app = FastAPI(title="delayr", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.admission = admission
    app.state.controller = controller

    @app.exception_handler(DelayrValidationError)
    async def _validation_error(_request: Request, exc: DelayrValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.method == "POST" and request.url.path == "/api/run":
            message = RUN_BODY_SHAPE
        else:
            message = "; ".join(
                f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
                for err in exc.errors()
            )
        return JSONResponse(status_code=400, content={"error": "Invalid request", "message": message})

    @app.exception_handler(AdmissionRejected)
    async def _rate_limited(_request: Request, exc: AdmissionRejected) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(exc.retry_after)},
            content={
                "error": "Rate limit exceeded",
                "message": f"Maximum {admission.limit} test runs per window. Please try again later.",
                "retryAfter": exc.retry_after,
            },
        )

    async def _resolve(run_ref: str) -> Run:
        run = await controller.get_run(run_ref)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return run

    async def _require_run_id(run_id: str) -> Run:
        run = await store.get_run_by_id(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return run

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/run")
    async def start_run(body: RunRequest, request: Request) -> dict[str, Any]:
        params = parse_run_parameters(
            {
                "endpoints": [e.model_dump() for e in body.endpoints],
                "requestCount": body.requestCount,
            }
        )
        run = await controller.submit(params, caller=_caller_key(request))
        return {
            "success": True,
            "runId": run.id,
            "slug": run.slug,
            "shareUrl": _share_url(settings, run),
            "message": "Tests started successfully",
        }

    @app.get("/api/run/{run_ref}")
    async def get_run(run_ref: str) -> dict[str, Any]:
        run = await _resolve(run_ref)
        report = await controller.run_report(run)
        return {
            "success": True,
            "run": run.to_dict(),
            "results": [r.to_dict() for r in report.results],
            "rawData": [s.to_dict() for s in report.samples],
        }

    @app.get("/r/{slug}")
    async def shared_run(slug: str) -> dict[str, Any]:
        run = await store.get_run_by_slug(slug)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        report = await controller.run_report(run)
        return {
            "success": True,
            "run": run.to_dict(),
            "results": [r.to_dict() for r in report.results],
            "histogram": [h.to_dict() for h in report.histogram],
            "shareUrl": _share_url(settings, run),
        }

    @app.get("/api/runs")
    async def recent_runs(limit: int = Query(RECENT_RUNS_DEFAULT, ge=1)) -> dict[str, Any]:
        runs = await store.list_recent_runs(min(limit, RECENT_RUNS_MAX))
        return {
            "success": True,
            "runs": [{**run.to_dict(), "shareUrl": _share_url(settings, run)} for run in runs],
        }

    @app.get("/api/results")
    async def results(runId: str) -> dict[str, Any]:
        run = await _require_run_id(runId)
        report = await controller.run_report(run)
        return {"success": True, "results": [r.to_dict() for r in report.results]}

    @app.get("/api/raw")
    async def raw(runId: str, endpoint: str | None = None) -> dict[str, Any]:
        await _require_run_id(runId)
        samples = await store.list_samples(runId, endpoint)
        return {"success": True, "data": [s.to_dict() for s in samples]}

    @app.get("/api/histogram")
    async def histogram(runId: str) -> dict[str, Any]:
        run = await _require_run_id(runId)
        report = await controller.run_report(run)
        return {"success": True, "histogram": [h.to_dict() for h in report.histogram]}

    @app.get("/api/buckets")
    async def buckets(runId: str, endpoint: str | None = None) -> dict[str, Any]:
        await _require_run_id(runId)
        samples = await store.list_samples(runId, endpoint)
        return {"success": True, "buckets": [b.to_dict() for b in compute_payload_buckets(samples)]}

    return app


def main() -> None:
    """Entry point for ``delayr-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
