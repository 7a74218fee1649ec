"""Run store contract and an in-memory implementation.

The controller only talks to the RunStore protocol. InMemoryRunStore keeps
runs and their samples for the lifetime of the process; samples are
partitioned by run id and only ever appended, so concurrent runs never
contend on the same list.
"""

from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from .exceptions import DelayrStoreError, InvalidRunTransition
from .logging_config import get_logger
from .models import Run, RunParameters, RunStatus, Sample

logger = get_logger("store")

SLUG_ALPHABET = string.ascii_lowercase + string.digits
SLUG_LENGTH = 8
SLUG_MAX_ATTEMPTS = 5


def generate_slug(length: int = SLUG_LENGTH) -> str:
    """Random lowercase base36 slug."""
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def generate_run_id() -> str:
    return uuid.uuid4().hex


@runtime_checkable
class RunStore(Protocol):
    """Durable storage for runs and samples as consumed by the run controller."""

    async def create_run(self, parameters: RunParameters) -> Run: ...

    async def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> Run: ...

    async def append_sample(self, sample: Sample) -> None: ...

    async def get_run_by_id(self, run_id: str) -> Run | None: ...

    async def get_run_by_slug(self, slug: str) -> Run | None: ...

    async def list_samples(self, run_id: str, endpoint: str | None = None) -> list[Sample]: ...

    async def list_recent_runs(self, limit: int = 10) -> list[Run]: ...

    async def delete_run(self, run_id: str) -> bool: ...


class InMemoryRunStore:
    """Process-local RunStore. Not shared between processes."""

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self._slugs: dict[str, str] = {}
        self._samples: dict[str, list[Sample]] = {}

    def __len__(self) -> int:
        return len(self._runs)

    async def create_run(self, parameters: RunParameters) -> Run:
        for _ in range(SLUG_MAX_ATTEMPTS):
            slug = generate_slug()
            if slug not in self._slugs:
                break
            logger.debug("Slug collision on %s, regenerating", slug)
        else:
            raise DelayrStoreError("Could not allocate a unique slug", context={"attempts": SLUG_MAX_ATTEMPTS})

        run = Run(
            id=generate_run_id(),
            slug=slug,
            parameters=parameters,
            status=RunStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        self._runs[run.id] = run
        self._slugs[slug] = run.id
        self._samples[run.id] = []
        return run

    async def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise DelayrStoreError("Run not found", context={"run_id": run_id})
        if not run.status.can_transition_to(status):
            raise InvalidRunTransition(
                f"Cannot move run from {run.status.value} to {status.value}",
                context={"run_id": run_id},
            )
        run.status = status
        if started_at is not None:
            run.started_at = started_at
        if completed_at is not None:
            run.completed_at = completed_at
        return run

    async def append_sample(self, sample: Sample) -> None:
        samples = self._samples.get(sample.run_id)
        if samples is None:
            raise DelayrStoreError("Cannot append sample to unknown run", context={"run_id": sample.run_id})
        samples.append(sample)

    async def get_run_by_id(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    async def get_run_by_slug(self, slug: str) -> Run | None:
        run_id = self._slugs.get(slug)
        return self._runs.get(run_id) if run_id is not None else None

    async def list_samples(self, run_id: str, endpoint: str | None = None) -> list[Sample]:
        samples = self._samples.get(run_id, [])
        if endpoint is None:
            return list(samples)
        return [s for s in samples if s.endpoint_url == endpoint]

    async def list_recent_runs(self, limit: int = 10) -> list[Run]:
        runs = sorted(self._runs.values(), key=lambda r: r.created_at, reverse=True)
        return runs[: max(0, limit)]

    async def delete_run(self, run_id: str) -> bool:
        run = self._runs.pop(run_id, None)
        if run is None:
            return False
        self._slugs.pop(run.slug, None)
        self._samples.pop(run_id, None)
        return True
