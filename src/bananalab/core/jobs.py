"""In-memory job tracking for generate requests.

A :class:`Job` is the client-visible view of one generate request.  While the
model call is in flight the job can be polled through ``GET /api/jobs/{id}``
to follow its status and progress; once it reaches a terminal state the
durable copy lives in :mod:`bananalab.core.generation_history` and the
in-memory job is eventually evicted.

State Machine
-------------
::

    queued ──► running ──► succeeded
       │          │
       └──────────┴──────► failed

Terminal jobs (``succeeded`` / ``failed``) are immutable.  Progress is
clamped to 0–100 and never moves backwards.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

from bananalab.core.errors import InvalidJobTransitionError, JobNotFoundError

logger = logging.getLogger(__name__)

JobStatus = Literal["queued", "running", "succeeded", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})

_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "failed"}),
    "running": frozenset({"succeeded", "failed"}),
    "succeeded": frozenset(),
    "failed": frozenset(),
}


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Job:
    id: str
    user_id: str
    inputs: dict[str, Any]
    preset_id: str | None = None
    status: JobStatus = "queued"
    progress: int = 0
    result_urls: list[str] = field(default_factory=list)
    error: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class JobStore:
    """Thread-safe in-memory job registry.

    Args:
        max_jobs: Retention limit.  When exceeded, the oldest terminal jobs
            are evicted; active jobs are never evicted.
    """

    def __init__(self, max_jobs: int = 500):
        self.max_jobs = max_jobs
        self._jobs: OrderedDict[str, Job] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def create(
        self,
        user_id: str,
        inputs: dict[str, Any],
        preset_id: str | None = None,
        job_id: str | None = None,
    ) -> Job:
        """Register a new queued job."""
        job = Job(id=job_id or new_job_id(), user_id=user_id, inputs=inputs, preset_id=preset_id)
        with self._lock:
            self._jobs[job.id] = job
            self._evict()
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def find(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def start(self, job_id: str) -> Job:
        return self._transition(job_id, "running")

    def succeed(self, job_id: str, result_urls: list[str]) -> Job:
        return self._transition(job_id, "succeeded", progress=100, result_urls=list(result_urls))

    def fail(self, job_id: str, error: str) -> Job:
        return self._transition(job_id, "failed", error=error)

    def set_progress(self, job_id: str, progress: int) -> Job:
        """Raise a running job's progress; lower values are ignored."""
        with self._lock:
            job = self._require(job_id)
            if job.is_terminal:
                raise InvalidJobTransitionError(f"Job {job_id} is already {job.status}")
            progress = max(job.progress, min(100, max(0, int(progress))))
            job = replace(job, progress=progress)
            self._jobs[job_id] = job
            return job

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _transition(self, job_id: str, status: JobStatus, **changes: Any) -> Job:
        with self._lock:
            job = self._require(job_id)
            if status not in _TRANSITIONS[job.status]:
                raise InvalidJobTransitionError(
                    f"Job {job_id} cannot move from {job.status} to {status}"
                )
            job = replace(job, status=status, **changes)
            self._jobs[job_id] = job

        logger.debug(f"Job {job_id} -> {status}")
        return job

    def _evict(self) -> None:
        # Caller holds the lock.
        excess = len(self._jobs) - self.max_jobs
        if excess <= 0:
            return
        for job_id in [jid for jid, job in self._jobs.items() if job.is_terminal][:excess]:
            del self._jobs[job_id]
