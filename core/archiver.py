"""Log archiver: fire-and-forget follow-up for completed jobs.

LogArchiver runs the log archival adapter after a job completes. It owns the
timeout and retry policy so the adapter does not have to, and it never raises:
archival is best effort and must not disturb the job's terminal state.

The key guarantee: the per-job lock is only taken for the short write that
attaches the reference. The download and upload happen outside it, so a slow
GitHub response never delays lifecycle or telemetry writes for that job.
"""

import asyncio
import logging
import time

from core.errors import UpstreamError
from core.locks import JobLocks
from core.store import JobStore
from integrations.archival import LogArchivalAdapter
from schemas.job import Job

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0


class LogArchiver:
    """Runs archival with a per-attempt timeout and a bounded retry.

    Attributes:
        timeout_seconds: Maximum time for one fetch-and-archive attempt
            before it is cancelled and counted as failed.
        max_attempts: Total attempts per job, first one included.
        backoff_seconds: Wait before attempt n+1 is backoff_seconds × n.
    """

    def __init__(
        self,
        adapter: LogArchivalAdapter,
        store: JobStore,
        locks: JobLocks,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._locks = locks
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def archive(self, job_id: str) -> str | None:
        """Archive one job's log and attach the reference to the job.

        This method never raises. Every failure is logged and the job keeps
        its null log reference.

        Args:
            job_id: External id of a completed job.

        Returns:
            The stored reference, or None if the job is unknown, already has
            a reference, or every attempt failed.
        """
        job = await self._store.get_job(job_id)
        if job is None:
            logger.warning("Skipping archival for unknown job %s.", job_id)
            return None
        if job.log_reference is not None:
            logger.debug("Job %s already archived at %s.", job_id, job.log_reference)
            return job.log_reference

        reference = await self._fetch_with_retry(job)
        if reference is None:
            return None

        async with self._locks.hold(job_id):
            current = await self._store.get_job(job_id)
            if current is None:
                return None
            await self._store.save_job(current.model_copy(update={"log_reference": reference}))

        return reference

    async def _fetch_with_retry(self, job: Job) -> str | None:
        """Call the adapter up to max_attempts times. Returns None on failure."""
        for attempt in range(1, self.max_attempts + 1):
            started = time.perf_counter()
            try:
                reference = await asyncio.wait_for(
                    self._adapter.fetch_and_archive(job),
                    timeout=self.timeout_seconds,
                )
                logger.info(
                    "Archived logs for job %s in %.0fms (attempt %d).",
                    job.job_id,
                    (time.perf_counter() - started) * 1000,
                    attempt,
                )
                return reference

            except asyncio.TimeoutError:
                logger.error(
                    "Archival for job %s timed out after %.1fs (attempt %d/%d).",
                    job.job_id,
                    self.timeout_seconds,
                    attempt,
                    self.max_attempts,
                )

            except UpstreamError as exc:
                logger.error(
                    "Archival for job %s failed (attempt %d/%d): %s",
                    job.job_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if not exc.retryable:
                    return None

            except Exception as exc:
                logger.exception("Unexpected archival error for job %s: %s", job.job_id, exc)
                return None

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_seconds * attempt)

        logger.error("Giving up on archival for job %s after %d attempts.", job.job_id, self.max_attempts)
        return None
