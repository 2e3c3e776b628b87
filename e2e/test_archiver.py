"""Tests for log archival: the archiver's retry policy, the GitHub archival
adapter, and file-backed log storage.

The archiver is exercised with scripted adapters, so no network is needed.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from core.archiver import LogArchiver
from core.errors import UpstreamError
from core.locks import JobLocks
from core.store import InMemoryJobStore
from integrations.archival import GitHubLogArchiver
from integrations.log_storage import FileLogStorage
from schemas.job import Completed, Job

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

class ScriptedAdapter:
    """Archival adapter that replays a list of outcomes, one per call.

    Each entry is either a reference string to return, an exception to
    raise, or the string "hang" to sleep past any timeout.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def fetch_and_archive(self, job: Job) -> str:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_completed_job(job_id: str = "101", repository: str | None = "acme/api") -> Job:
    return Job(
        job_id=job_id,
        run_id="900",
        name="build",
        state=Completed(conclusion="success"),
        repository=repository,
        started_at=NOW,
        completed_at=NOW,
        created_at=NOW,
        updated_at=NOW,
    )


async def make_archiver(adapter, job: Job | None = None, **kwargs) -> tuple[LogArchiver, InMemoryJobStore]:
    store = InMemoryJobStore()
    if job is not None:
        await store.save_job(job)
    options = {"timeout_seconds": 0.05, "max_attempts": 3, "backoff_seconds": 0.0}
    options.update(kwargs)
    return LogArchiver(adapter, store, JobLocks(), **options), store


# ── LogArchiver ───────────────────────────────────────────────────────────────

class TestLogArchiver:
    async def test_success_attaches_reference(self):
        adapter = ScriptedAdapter("file:///logs/101.txt")
        archiver, store = await make_archiver(adapter, make_completed_job())

        reference = await archiver.archive("101")

        assert reference == "file:///logs/101.txt"
        assert (await store.get_job("101")).log_reference == reference
        assert adapter.calls == 1

    async def test_retryable_failure_is_retried(self):
        adapter = ScriptedAdapter(UpstreamError("502 from GitHub"), "file:///logs/101.txt")
        archiver, store = await make_archiver(adapter, make_completed_job())

        assert await archiver.archive("101") == "file:///logs/101.txt"
        assert adapter.calls == 2

    async def test_non_retryable_failure_stops_immediately(self):
        adapter = ScriptedAdapter(UpstreamError("no token", retryable=False))
        archiver, store = await make_archiver(adapter, make_completed_job())

        assert await archiver.archive("101") is None
        assert adapter.calls == 1
        assert (await store.get_job("101")).log_reference is None

    async def test_gives_up_after_max_attempts(self):
        adapter = ScriptedAdapter(UpstreamError("503"))
        archiver, store = await make_archiver(adapter, make_completed_job(), max_attempts=2)

        assert await archiver.archive("101") is None
        assert adapter.calls == 2

    async def test_timeout_counts_as_failed_attempt(self):
        adapter = ScriptedAdapter("hang", "file:///logs/101.txt")
        archiver, _ = await make_archiver(adapter, make_completed_job())

        assert await archiver.archive("101") == "file:///logs/101.txt"
        assert adapter.calls == 2

    async def test_unexpected_error_never_raises(self):
        adapter = ScriptedAdapter(RuntimeError("boom"))
        archiver, store = await make_archiver(adapter, make_completed_job())

        assert await archiver.archive("101") is None
        assert adapter.calls == 1
        assert (await store.get_job("101")).is_terminal

    async def test_unknown_job_is_skipped(self):
        adapter = ScriptedAdapter("file:///logs/x.txt")
        archiver, _ = await make_archiver(adapter)

        assert await archiver.archive("missing") is None
        assert adapter.calls == 0

    async def test_already_archived_job_is_not_fetched_again(self):
        adapter = ScriptedAdapter("file:///logs/new.txt")
        job = make_completed_job().model_copy(update={"log_reference": "file:///logs/old.txt"})
        archiver, _ = await make_archiver(adapter, job)

        assert await archiver.archive("101") == "file:///logs/old.txt"
        assert adapter.calls == 0

    async def test_lock_not_held_during_fetch(self):
        locks = JobLocks()
        store = InMemoryJobStore()
        await store.save_job(make_completed_job())
        seen_locked: list[bool] = []

        class ProbingAdapter:
            async def fetch_and_archive(self, job: Job) -> str:
                seen_locked.append(locks.lock_for(job.job_id).locked())
                return "file:///logs/101.txt"

        archiver = LogArchiver(ProbingAdapter(), store, locks, timeout_seconds=1.0)
        await archiver.archive("101")
        assert seen_locked == [False]


# ── FileLogStorage ────────────────────────────────────────────────────────────

class TestFileLogStorage:
    async def test_save_then_load(self, tmp_path):
        storage = FileLogStorage(tmp_path)
        reference = await storage.save("101", "step 1\nstep 2\n")

        assert reference.startswith("file://")
        assert reference.endswith("/job-logs/101.txt")
        assert await storage.load("101") == "step 1\nstep 2\n"

    async def test_load_missing_returns_none(self, tmp_path):
        assert await FileLogStorage(tmp_path).load("999") is None

    def test_path_like_ids_are_refused(self, tmp_path):
        with pytest.raises(UpstreamError) as exc_info:
            FileLogStorage(tmp_path).path_for("../../etc/passwd")
        assert exc_info.value.retryable is False


# ── GitHubLogArchiver ─────────────────────────────────────────────────────────

class TestGitHubLogArchiver:
    async def test_job_without_repository_is_not_retryable(self, tmp_path):
        archiver = GitHubLogArchiver(FileLogStorage(tmp_path), token="t")
        with pytest.raises(UpstreamError) as exc_info:
            await archiver.fetch_and_archive(make_completed_job(repository=None))
        assert exc_info.value.retryable is False

    async def test_missing_token_is_not_retryable(self, tmp_path):
        archiver = GitHubLogArchiver(FileLogStorage(tmp_path), token="")
        with pytest.raises(UpstreamError) as exc_info:
            await archiver.fetch_and_archive(make_completed_job())
        assert exc_info.value.retryable is False

    async def test_downloads_and_stores(self, tmp_path, monkeypatch):
        import integrations.archival as archival

        async def fake_fetch(repository, job_id, token, api_base):
            assert (repository, job_id, token) == ("acme/api", "101", "t")
            return "hello from the runner"

        monkeypatch.setattr(archival, "fetch_job_logs", fake_fetch)
        storage = FileLogStorage(tmp_path)

        reference = await GitHubLogArchiver(storage, token="t").fetch_and_archive(make_completed_job())

        assert reference.endswith("101.txt")
        assert await storage.load("101") == "hello from the runner"

    async def test_end_to_end_with_mock_transport(self, tmp_path, monkeypatch):
        import integrations.archival as archival
        from integrations.github import fetch_job_logs

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="##[group]Run make\nok\n")

        async def fetch_with_transport(repository, job_id, token, api_base):
            return await fetch_job_logs(repository, job_id, token, api_base, transport=httpx.MockTransport(handler))

        monkeypatch.setattr(archival, "fetch_job_logs", fetch_with_transport)
        store = InMemoryJobStore()
        await store.save_job(make_completed_job())
        archiver = LogArchiver(GitHubLogArchiver(FileLogStorage(tmp_path), token="t"), store, JobLocks())

        reference = await archiver.archive("101")

        assert reference is not None
        assert (await store.get_job("101")).log_reference == reference
