"""Tests for the job state machine.

apply_event() is tested as a pure function; LifecycleProcessor is tested
against InMemoryJobStore. No network, no API keys.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ConflictIgnored, NotFoundError
from core.lifecycle import LifecycleProcessor, apply_event
from core.locks import JobLocks
from core.store import InMemoryJobStore
from schemas.events import LifecycleAction, LifecycleEvent
from schemas.job import Completed, Conclusion, InProgress, JobStatus, Queued

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_event(action: str = "in_progress", job_id: str = "101", **overrides) -> LifecycleEvent:
    fields = {
        "action": action,
        "job_id": job_id,
        "run_id": "900",
        "name": "build",
        "repository": "acme/api",
        "branch": "main",
        "runner_labels": ["self-hosted", "linux"],
    }
    if action == "completed":
        fields["conclusion"] = "success"
    fields.update(overrides)
    return LifecycleEvent(**fields)


def make_processor(store: InMemoryJobStore | None = None, now: datetime = NOW) -> LifecycleProcessor:
    return LifecycleProcessor(store or InMemoryJobStore(), JobLocks(), clock=lambda: now)


# ── apply_event: creation ─────────────────────────────────────────────────────

class TestApplyEventCreate:
    def test_queued_creates_queued_job_without_start(self):
        job = apply_event(None, make_event("queued"), NOW)
        assert isinstance(job.state, Queued)
        assert job.status is JobStatus.QUEUED
        assert job.started_at is None
        assert job.conclusion is None

    def test_in_progress_creates_running_job_started_now(self):
        job = apply_event(None, make_event("in_progress"), NOW)
        assert isinstance(job.state, InProgress)
        assert job.started_at == NOW
        assert job.created_at == NOW

    def test_event_started_at_wins_over_clock(self):
        started = NOW - timedelta(minutes=3)
        job = apply_event(None, make_event("in_progress", started_at=started), NOW)
        assert job.started_at == started

    def test_descriptive_fields_copied(self):
        job = apply_event(None, make_event("queued", workflow_name="CI"), NOW)
        assert job.repository == "acme/api"
        assert job.branch == "main"
        assert job.workflow_name == "CI"
        assert job.runner_labels == ["self-hosted", "linux"]


# ── apply_event: transitions ──────────────────────────────────────────────────

class TestApplyEventTransitions:
    def test_queued_to_in_progress(self):
        queued = apply_event(None, make_event("queued"), NOW)
        running = apply_event(queued, make_event("in_progress"), NOW + timedelta(seconds=5))
        assert isinstance(running.state, InProgress)
        assert running.started_at == NOW + timedelta(seconds=5)
        assert running.created_at == NOW

    def test_late_queued_does_not_regress_running_job(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        after = apply_event(running, make_event("queued", runner_name="runner-7"), NOW + timedelta(seconds=1))
        assert isinstance(after.state, InProgress)
        assert after.runner_name == "runner-7"
        assert after.started_at == NOW

    def test_null_event_fields_do_not_erase_stored_values(self):
        running = apply_event(None, make_event("in_progress", commit_sha="abc123"), NOW)
        after = apply_event(running, make_event("in_progress", commit_sha=None, branch=None), NOW)
        assert after.commit_sha == "abc123"
        assert after.branch == "main"

    def test_completed_sets_conclusion_and_time(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        done_at = NOW + timedelta(minutes=4)
        job = apply_event(running, make_event("completed", completed_at=done_at, conclusion="failure"), NOW)
        assert isinstance(job.state, Completed)
        assert job.conclusion is Conclusion.FAILURE
        assert job.completed_at == done_at
        assert job.is_terminal

    def test_completed_without_time_uses_clock(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        later = NOW + timedelta(minutes=2)
        job = apply_event(running, make_event("completed"), later)
        assert job.completed_at == later

    def test_completed_before_start_is_clamped(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        job = apply_event(running, make_event("completed", completed_at=NOW - timedelta(minutes=1)), NOW)
        assert job.completed_at == job.started_at

    def test_queued_after_completed_conflicts(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        done = apply_event(running, make_event("completed"), NOW)
        with pytest.raises(ConflictIgnored):
            apply_event(done, make_event("queued"), NOW)

    def test_in_progress_after_completed_conflicts(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        done = apply_event(running, make_event("completed"), NOW)
        with pytest.raises(ConflictIgnored):
            apply_event(done, make_event("in_progress"), NOW)

    def test_duplicate_completion_conflicts(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        done = apply_event(running, make_event("completed"), NOW)
        with pytest.raises(ConflictIgnored, match="duplicate"):
            apply_event(done, make_event("completed"), NOW)

    def test_different_conclusion_overwrites(self):
        running = apply_event(None, make_event("in_progress"), NOW)
        done = apply_event(running, make_event("completed", conclusion="failure"), NOW)
        redone = apply_event(done, make_event("completed", conclusion="success"), NOW + timedelta(seconds=30))
        assert redone.conclusion is Conclusion.SUCCESS
        assert redone.completed_at == NOW + timedelta(seconds=30)

    def test_completed_for_unknown_job_not_found(self):
        with pytest.raises(NotFoundError):
            apply_event(None, make_event("completed"), NOW)


class TestLifecycleEventSchema:
    def test_completed_requires_conclusion(self):
        with pytest.raises(ValueError):
            LifecycleEvent(action="completed", job_id="1", run_id="2", name="build")

    def test_naive_timestamps_are_utc(self):
        event = make_event("in_progress", started_at=datetime(2025, 1, 1, 12, 0))
        assert event.started_at.tzinfo == timezone.utc


# ── LifecycleProcessor ────────────────────────────────────────────────────────

class TestLifecycleProcessor:
    async def test_processes_and_stores_new_job(self):
        store = InMemoryJobStore()
        outcome = await make_processor(store).handle(make_event("queued"))

        assert outcome.status == "processed"
        assert outcome.action is LifecycleAction.QUEUED
        assert outcome.archive is False
        assert (await store.get_job("101")).status is JobStatus.QUEUED

    async def test_completion_requests_archival(self):
        store = InMemoryJobStore()
        processor = make_processor(store)
        await processor.handle(make_event("in_progress"))

        outcome = await processor.handle(make_event("completed"))
        assert outcome.status == "processed"
        assert outcome.archive is True

    async def test_completion_with_log_reference_skips_archival(self):
        store = InMemoryJobStore()
        processor = make_processor(store)
        await processor.handle(make_event("in_progress"))
        job = await store.get_job("101")
        await store.save_job(job.model_copy(update={"log_reference": "file:///logs/101.txt"}))

        outcome = await processor.handle(make_event("completed"))
        assert outcome.archive is False

    async def test_completed_for_unknown_job_is_ignored_and_not_created(self):
        store = InMemoryJobStore()
        outcome = await make_processor(store).handle(make_event("completed", job_id="404"))

        assert outcome.status == "ignored"
        assert "unknown job" in outcome.reason
        assert await store.get_job("404") is None

    async def test_duplicate_completion_leaves_record_identical(self):
        store = InMemoryJobStore()
        processor = make_processor(store)
        await processor.handle(make_event("in_progress"))
        await processor.handle(make_event("completed"))
        first = await store.get_job("101")

        outcome = await processor.handle(make_event("completed"))
        assert outcome.status == "ignored"
        assert await store.get_job("101") == first

    async def test_queued_after_completed_keeps_terminal_state(self):
        store = InMemoryJobStore()
        processor = make_processor(store)
        await processor.handle(make_event("in_progress"))
        await processor.handle(make_event("completed", conclusion="cancelled"))

        outcome = await processor.handle(make_event("queued"))
        job = await store.get_job("101")
        assert outcome.status == "ignored"
        assert job.status is JobStatus.COMPLETED
        assert job.conclusion is Conclusion.CANCELLED

    async def test_concurrent_events_for_one_job_serialize(self):
        store = InMemoryJobStore()
        processor = make_processor(store)

        outcomes = await asyncio.gather(
            processor.handle(make_event("queued")),
            processor.handle(make_event("in_progress")),
        )
        assert all(o.status == "processed" for o in outcomes)
        assert (await store.get_job("101")).status is JobStatus.IN_PROGRESS
