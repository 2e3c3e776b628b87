"""Lifecycle event processor — the job state machine.

    queued ──► in_progress ──► completed(conclusion)
      │                            ▲
      └────────────────────────────┘

queued and in_progress are both entry states: a job may first be seen in
either. completed is terminal; nothing leaves it except a later completed
event with a different conclusion, which overwrites the conclusion (webhook
delivery is at-least-once, so the last one received wins).

apply_event() is the pure transition function. LifecycleProcessor wraps it
with the per-job lock and the store write, and turns the expected refusals
(ConflictIgnored, NotFoundError) into an "ignored" outcome so the webhook
sender still gets a 200.

Log archival is not started here. The outcome carries archive=True and the
caller schedules it, so a slow log download never runs under the job lock.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from core.errors import ConflictIgnored, NotFoundError
from core.locks import JobLocks
from core.store import JobStore
from schemas.events import LifecycleAction, LifecycleEvent, LifecycleOutcome
from schemas.job import Completed, InProgress, Job, Queued

logger = logging.getLogger(__name__)

# Event fields copied onto the job whenever the event carries a value.
_DESCRIPTIVE_FIELDS = (
    "name",
    "repository",
    "branch",
    "commit_sha",
    "workflow_name",
    "runner_name",
    "runner_os",
    "installation_id",
)


def apply_event(job: Job | None, event: LifecycleEvent, now: datetime) -> Job:
    """Return the job as it should be stored after this event.

    Args:
        job: The currently stored job, or None if the id is unknown.
        event: The incoming lifecycle event.
        now: Wall-clock time to use where the event carries no timestamp.

    Returns:
        The new Job record. The input job is never modified.

    Raises:
        ConflictIgnored: The event would regress a completed job, or it
            repeats the completion that is already stored.
        NotFoundError: A completed event for a job that was never stored.
    """
    if event.action is LifecycleAction.COMPLETED:
        return _complete(job, event, now)
    return _upsert_active(job, event, now)


def _upsert_active(job: Job | None, event: LifecycleEvent, now: datetime) -> Job:
    if job is None:
        started_at = event.started_at
        if started_at is None and event.action is LifecycleAction.IN_PROGRESS:
            started_at = now
        return Job(
            job_id=event.job_id,
            run_id=event.run_id,
            name=event.name,
            state=InProgress() if event.action is LifecycleAction.IN_PROGRESS else Queued(),
            repository=event.repository,
            branch=event.branch,
            commit_sha=event.commit_sha,
            workflow_name=event.workflow_name,
            runner_name=event.runner_name,
            runner_os=event.runner_os,
            runner_labels=list(event.runner_labels),
            installation_id=event.installation_id,
            started_at=started_at,
            created_at=now,
            updated_at=now,
        )

    if job.is_terminal:
        raise ConflictIgnored(
            f"'{event.action.value}' event for job {job.job_id} arrived after completion"
        )

    # A late "queued" must not pull a running job back.
    state = InProgress() if event.action is LifecycleAction.IN_PROGRESS else job.state

    started_at = event.started_at or job.started_at
    if started_at is None and isinstance(state, InProgress):
        started_at = now

    return job.model_copy(update={
        **_merged_fields(job, event),
        "run_id": event.run_id,
        "state": state,
        "started_at": started_at,
        "updated_at": now,
    })


def _complete(job: Job | None, event: LifecycleEvent, now: datetime) -> Job:
    if job is None:
        raise NotFoundError(f"completed event for unknown job {event.job_id}")

    if isinstance(job.state, Completed) and job.state.conclusion == event.conclusion:
        raise ConflictIgnored(
            f"duplicate completion for job {job.job_id} ({event.conclusion.value})"
        )

    completed_at = event.completed_at or now
    started_at = event.started_at or job.started_at
    if started_at is not None and completed_at < started_at:
        logger.warning(
            "Job %s reports completed_at %s before started_at %s; clamping.",
            job.job_id,
            completed_at.isoformat(),
            started_at.isoformat(),
        )
        completed_at = started_at

    return job.model_copy(update={
        **_merged_fields(job, event),
        "state": Completed(conclusion=event.conclusion),
        "started_at": started_at,
        "completed_at": completed_at,
        "updated_at": now,
    })


def _merged_fields(job: Job, event: LifecycleEvent) -> dict:
    update = {
        field: getattr(event, field)
        for field in _DESCRIPTIVE_FIELDS
        if getattr(event, field) is not None
    }
    if event.runner_labels:
        update["runner_labels"] = list(event.runner_labels)
    return update


class LifecycleProcessor:
    """Applies lifecycle events to the job store, one job at a time.

    Attributes:
        _store: Where jobs are read from and written to.
        _locks: Per-job locks shared with the ingestion service, so a
            telemetry write and a lifecycle write for the same job never
            interleave.
        _clock: Returns the current UTC time. Injected so tests can pin it.
    """

    def __init__(
        self,
        store: JobStore,
        locks: JobLocks,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._locks = locks
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle(self, event: LifecycleEvent) -> LifecycleOutcome:
        """Apply one event and report what happened.

        Never raises for the expected refusals. Out-of-order, duplicate, and
        unknown-job completions are logged at warning level and come back as
        status="ignored" with the reason.

        Args:
            event: A validated lifecycle event.

        Returns:
            LifecycleOutcome. archive=True means the job just completed
            without a log reference and the caller should archive its log.
        """
        async with self._locks.hold(event.job_id):
            current = await self._store.get_job(event.job_id)
            try:
                updated = apply_event(current, event, self._clock())
            except (ConflictIgnored, NotFoundError) as exc:
                logger.warning("Ignoring %s event for job %s: %s", event.action.value, event.job_id, exc)
                return LifecycleOutcome(
                    status="ignored",
                    job_id=event.job_id,
                    action=event.action,
                    reason=str(exc),
                )
            await self._store.save_job(updated)

        archive = updated.is_terminal and updated.log_reference is None
        logger.info(
            "Job %s (%s) → %s%s.",
            updated.job_id,
            updated.name,
            updated.status.value,
            f" [{updated.conclusion.value}]" if updated.conclusion else "",
        )
        return LifecycleOutcome(
            status="processed",
            job_id=updated.job_id,
            action=event.action,
            archive=archive,
        )
