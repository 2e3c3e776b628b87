"""Per-job mutual exclusion.

Lifecycle upserts and the ingestion read-latest-then-append step must not
interleave for the same job, but jobs must never wait on each other. JobLocks
hands out one asyncio.Lock per external job id.

Locks live in a WeakValueDictionary: while any coroutine holds or waits on a
job's lock it stays registered, and once the last reference goes away the
entry disappears on its own. Long-running services therefore do not grow one
lock per job ever seen.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class JobLocks:
    """Registry of asyncio locks keyed by external job id.

    All users must run on the same event loop.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, job_id: str) -> asyncio.Lock:
        """Return the lock for job_id, creating it if nobody holds one."""
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, job_id: str) -> AsyncIterator[None]:
        """Hold the job's lock for the duration of the block.

        Usage:
            async with locks.hold(job.job_id):
                job = await store.get_job(job.job_id)
                ...
                await store.save_job(updated)
        """
        lock = self.lock_for(job_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
