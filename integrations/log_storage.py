"""Durable storage for archived job logs.

FileLogStorage writes one text object per job under
<root>/job-logs/<job_id>.txt and hands back a file:// URI as the reference
stored on the Job. Any object store with the same save/load contract can be
swapped in.

File I/O runs in a worker thread so a large log never blocks the event loop.
"""

import asyncio
import logging
import pathlib
import re

from core.errors import UpstreamError

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileLogStorage:
    """Filesystem-backed log archive.

    Attributes:
        root: Base directory. Created on first write.
    """

    def __init__(self, root: pathlib.Path) -> None:
        self.root = pathlib.Path(root)

    def path_for(self, job_id: str) -> pathlib.Path:
        # Job ids come from webhook bodies; refuse anything path-like.
        if not _SAFE_ID.match(job_id):
            raise UpstreamError(f"refusing to store logs for job id '{job_id}'", retryable=False)
        return self.root / "job-logs" / f"{job_id}.txt"

    async def save(self, job_id: str, content: str) -> str:
        """Write the log and return its reference URI.

        Raises:
            UpstreamError: The file could not be written.
        """
        path = self.path_for(job_id)
        try:
            await asyncio.to_thread(_write_text, path, content)
        except OSError as exc:
            raise UpstreamError(f"could not archive logs for job {job_id}: {exc}") from exc
        logger.info("Archived logs for job %s at %s.", job_id, path)
        return path.resolve().as_uri()

    async def load(self, job_id: str) -> str | None:
        """Return the archived log text, or None if nothing was archived.

        Raises:
            UpstreamError: The file exists but could not be read.
        """
        path = self.path_for(job_id)
        if not path.exists():
            return None
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise UpstreamError(f"could not read archived logs for job {job_id}: {exc}") from exc


def _write_text(path: pathlib.Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
