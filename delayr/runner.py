"""Run controller: lifecycle, sequential probing, immediate sample persistence.

A run moves pending -> running -> completed, or to failed when something
outside normal probe handling goes wrong (the store refusing a status change,
an exception escaping the endpoint loop). Probe failures are data, not run
failures: a run whose every probe timed out still completes.

Probes never overlap within a run. Endpoints are visited in the given order
and each receives request_count strictly sequential probes, so the measured
latency reflects one request at a time rather than concurrent pressure.
Independent runs execute concurrently as separate asyncio tasks.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from .admission import AdmissionGate
from .analytics import compute_histogram, compute_summary
from .config import DEFAULT_REQUEST_TIMEOUT_MS, validate_run_parameters
from .exceptions import DelayrRunnerError
from .logging_config import get_logger
from .models import AnalyticsResult, HistogramBucket, Run, RunParameters, RunStatus, Sample
from .probe import create_client, execute_probe
from .store import RunStore

logger = get_logger("runner")

ClientFactory = Callable[[float], httpx.AsyncClient]
SampleCallback = Callable[[Sample], Awaitable[None] | None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RunReport:
    """A run with analytics derived from whatever samples exist right now."""

    run: Run
    results: list[AnalyticsResult]
    histogram: list[HistogramBucket]
    samples: list[Sample] = field(default_factory=list)

    @property
    def sample_count(self) -> int:
        return len(self.samples)


class RunController:
    """Creates runs, executes them in the background and finalizes their status."""

    def __init__(
        self,
        store: RunStore,
        probe_timeout_ms: float = DEFAULT_REQUEST_TIMEOUT_MS,
        client_factory: ClientFactory | None = None,
        admission: AdmissionGate | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.probe_timeout_ms = probe_timeout_ms
        self.admission = admission
        self._client_factory: ClientFactory = client_factory or (lambda timeout_ms: create_client(timeout_ms))
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[Run]] = {}

    @property
    def active_runs(self) -> list[str]:
        return [run_id for run_id, task in self._tasks.items() if not task.done()]

    async def create_run(self, parameters: RunParameters) -> Run:
        """Validate and store a new pending run. Nothing is probed yet."""
        validate_run_parameters(parameters)
        run = await self.store.create_run(parameters)
        logger.info(
            "Created run %s (slug=%s): endpoints=%d, request_count=%d",
            run.id, run.slug, len(parameters.endpoints), parameters.request_count,
        )
        return run

    async def submit(self, parameters: RunParameters, caller: str | None = None) -> Run:
        """Admission check, create and start in the background.

        Raises:
            AdmissionRejected: If the caller exhausted its allowance
            DelayrValidationError: If parameters are invalid
        """
        validate_run_parameters(parameters)
        if self.admission is not None and caller is not None:
            self.admission.admit(caller)
        run = await self.create_run(parameters)
        self.start_run(run)
        return run

    def start_run(self, run: Run, on_sample: SampleCallback | None = None) -> asyncio.Task[Run]:
        """Spawn execute_run as a task that outlives the caller; the handle is kept until done."""
        if run.id in self._tasks:
            raise DelayrRunnerError("Run already started", context={"run_id": run.id})
        if run.status.is_terminal:
            raise DelayrRunnerError(f"Run already {run.status.value}", context={"run_id": run.id})
        task = asyncio.create_task(self.execute_run(run, on_sample=on_sample), name=f"delayr-run-{run.slug}")
        self._tasks[run.id] = task
        task.add_done_callback(lambda t, run_id=run.id: self._on_task_done(run_id, t))
        return task

    def _on_task_done(self, run_id: str, task: asyncio.Task[Run]) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.warning("Run %s task was cancelled", run_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Run %s task ended with an unhandled error", run_id, exc_info=exc)

    async def wait(self, run_id: str) -> Run | None:
        """Wait for a started run to finish; returns its stored state."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.store.get_run_by_id(run_id)

    async def drain(self) -> None:
        """Wait for every run still executing."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def execute_run(self, run: Run, on_sample: SampleCallback | None = None) -> Run:
        """Probe every endpoint of ``run`` and finalize its status. Does not raise."""
        params = run.parameters
        try:
            await self.store.update_run_status(run.id, RunStatus.RUNNING, started_at=self._clock())
            run.status = RunStatus.RUNNING
            logger.info("Run %s started", run.id, extra={"run_id": run.id})

            async with self._client_factory(self.probe_timeout_ms) as client:
                for endpoint in params.endpoints:
                    logger.info("Testing endpoint: %s %s", endpoint.method.value, endpoint.url, extra={"run_id": run.id})
                    for i in range(1, params.request_count + 1):
                        sample = await execute_probe(
                            client,
                            endpoint,
                            i,
                            total=params.request_count,
                            run_id=run.id,
                            timeout_ms=self.probe_timeout_ms,
                        )
                        await self._persist(sample)
                        if on_sample is not None:
                            result = on_sample(sample)
                            if asyncio.iscoroutine(result):
                                await result
                    logger.info(
                        "Completed %d requests for %s %s", params.request_count, endpoint.method.value, endpoint.url
                    )
        except Exception as e:  # noqa: BLE001
            logger.exception("Run %s failed: %s", run.id, e, extra={"run_id": run.id})
            return await self._finish(run, RunStatus.FAILED)
        return await self._finish(run, RunStatus.COMPLETED)

    async def _persist(self, sample: Sample) -> None:
        try:
            await self.store.append_sample(sample)
        except Exception as e:  # noqa: BLE001
            # Isolated write failures never abort the run.
            logger.warning("Failed to store sample for run %s: %s", sample.run_id, e)

    async def _finish(self, run: Run, status: RunStatus) -> Run:
        completed_at = self._clock()
        try:
            await self.store.update_run_status(run.id, status, completed_at=completed_at)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record %s status for run %s", status.value, run.id)
            if status is RunStatus.COMPLETED:
                return await self._finish(run, RunStatus.FAILED)
            return run
        run.status = status
        run.completed_at = completed_at
        logger.info("Run %s %s", run.id, status.value, extra={"run_id": run.id})
        return run

    async def run_to_completion(self, parameters: RunParameters, on_sample: SampleCallback | None = None) -> Run:
        """Create, execute and await a run in the caller's task, without a background task."""
        run = await self.create_run(parameters)
        return await self.execute_run(run, on_sample=on_sample)

    async def get_run(self, id_or_slug: str) -> Run | None:
        """Resolve a run by slug first, then by id."""
        run = await self.store.get_run_by_slug(id_or_slug)
        if run is None:
            run = await self.store.get_run_by_id(id_or_slug)
        return run

    async def run_report(self, run: Run, endpoint: str | None = None) -> RunReport:
        """Analytics over the run's samples so far; valid while the run is still executing."""
        samples = await self.store.list_samples(run.id, endpoint)
        names = {e.url: e.name for e in run.parameters.endpoints if e.name}
        return RunReport(
            run=run,
            results=compute_summary(samples, names=names),
            histogram=compute_histogram(samples),
            samples=samples,
        )
