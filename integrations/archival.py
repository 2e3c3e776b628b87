"""Log archival adapter.

The lifecycle core only knows the LogArchivalAdapter protocol: given a job,
fetch its execution log from the CI platform, persist it durably, and return
a reference. GitHubLogArchiver is the production implementation: GitHub REST
API for retrieval, FileLogStorage for persistence.
"""

import logging
from typing import Protocol

from core.errors import UpstreamError
from integrations.github import fetch_job_logs
from integrations.log_storage import FileLogStorage
from schemas.job import Job

logger = logging.getLogger(__name__)


class LogArchivalAdapter(Protocol):
    """Contract consumed by the archiver."""

    async def fetch_and_archive(self, job: Job) -> str:
        """Archive the job's log and return a reference to it.

        Raises:
            UpstreamError: Retrieval or storage failed.
        """


class GitHubLogArchiver:
    """Downloads a job log from GitHub and stores it in a FileLogStorage."""

    def __init__(
        self,
        storage: FileLogStorage,
        token: str,
        api_base: str = "https://api.github.com",
    ) -> None:
        self.storage = storage
        self._token = token
        self._api_base = api_base

    async def fetch_and_archive(self, job: Job) -> str:
        if not job.repository:
            raise UpstreamError(f"job {job.job_id} has no repository; cannot fetch logs", retryable=False)

        logs = await fetch_job_logs(job.repository, job.job_id, self._token, self._api_base)
        return await self.storage.save(job.job_id, logs)
