"""Job store.

JobStore is the persistence contract the core depends on: jobs keyed by
external job id, metric samples per job ordered by timestamp, and the
installation records used for ownership checks. Components receive a store
instance at construction time; nothing in the core reaches for a global.

InMemoryJobStore is the implementation the service ships with. It keeps
everything in RAM and is lost on restart. A relational or key-value backend
only has to satisfy the protocol below.

Every write method completes without yielding to the event loop, so a single
call is atomic with respect to other coroutines. Reads return copies, so a
caller iterating a series never sees a later append.
"""

import bisect
from typing import Protocol

from schemas.job import Installation, Job
from schemas.metric import MetricSample


class JobStore(Protocol):
    """Storage interface for jobs, samples, and installations."""

    async def get_job(self, job_id: str) -> Job | None:
        """Return the job with this external id, or None."""

    async def save_job(self, job: Job) -> None:
        """Insert or replace the job keyed by job.job_id."""

    async def list_jobs_by_run(self, run_id: str) -> list[Job]:
        """Return every job of a run, ordered by started_at (unstarted last)."""

    async def latest_sample(self, job_id: str) -> MetricSample | None:
        """Return the job's sample with the greatest timestamp, or None."""

    async def list_samples(self, job_id: str) -> list[MetricSample]:
        """Return a snapshot of the job's samples ordered by timestamp."""

    async def append_sample(self, sample: MetricSample, provisional_job: Job | None = None) -> None:
        """Store one sample, and the provisional job it creates if given, in one write."""

    async def get_installation(self, account_login: str) -> Installation | None:
        """Return the installation for a repository owner, or None."""

    async def save_installation(self, installation: Installation) -> None:
        """Insert or replace an installation keyed by account login."""

    async def delete_installation(self, installation_id: str) -> bool:
        """Remove an installation. Returns False if it did not exist."""


class InMemoryJobStore:
    """JobStore backed by dictionaries.

    Attributes:
        _jobs: job_id → Job.
        _samples: job_id → samples sorted by timestamp. Samples with equal
            timestamps keep arrival order.
        _installations: lower-cased account login → Installation.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._samples: dict[str, list[MetricSample]] = {}
        self._installations: dict[str, Installation] = {}

    # ── Jobs ──────────────────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def save_job(self, job: Job) -> None:
        self._jobs[job.job_id] = job

    async def list_jobs_by_run(self, run_id: str) -> list[Job]:
        jobs = [job for job in self._jobs.values() if job.run_id == run_id]
        return sorted(jobs, key=lambda j: (j.started_at is None, j.started_at or j.created_at))

    # ── Samples ───────────────────────────────────────────────────────────────

    async def latest_sample(self, job_id: str) -> MetricSample | None:
        series = self._samples.get(job_id)
        return series[-1] if series else None

    async def list_samples(self, job_id: str) -> list[MetricSample]:
        return list(self._samples.get(job_id, ()))

    async def append_sample(self, sample: MetricSample, provisional_job: Job | None = None) -> None:
        if provisional_job is not None:
            self._jobs[provisional_job.job_id] = provisional_job
        series = self._samples.setdefault(sample.job_id, [])
        bisect.insort_right(series, sample, key=lambda s: s.timestamp)

    # ── Installations ─────────────────────────────────────────────────────────

    async def get_installation(self, account_login: str) -> Installation | None:
        return self._installations.get(account_login.lower())

    async def save_installation(self, installation: Installation) -> None:
        self._installations[installation.account_login.lower()] = installation

    async def delete_installation(self, installation_id: str) -> bool:
        for login, installation in list(self._installations.items()):
            if installation.installation_id == installation_id:
                del self._installations[login]
                return True
        return False
