"""Lifecycle event schema.

A LifecycleEvent is the normalised form of one GitHub workflow_job webhook.
integrations/github.py builds it from the raw payload; the lifecycle
processor consumes it and answers with a LifecycleOutcome.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from schemas.job import Conclusion
from schemas.metric import as_utc


class LifecycleAction(str, Enum):
    """The workflow_job actions the processor acts on.

    Extends str so values compare and serialize as plain strings
    ("queued", "completed") in logs and API responses.

    GitHub also sends "waiting" for jobs blocked on an environment approval.
    That action is not part of the state machine and is ignored upstream of
    the processor.
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class LifecycleEvent(BaseModel):
    """One job state change reported by the CI platform.

    Attributes:
        action: Which transition the sender is reporting.
        job_id: External job id (stringified).
        run_id: External run id (stringified).
        name: Job name as defined in the workflow.
        conclusion: Outcome of a completed job. Required when action is
            "completed" and ignored otherwise.
        installation_id: GitHub App installation that delivered the event.
    """

    action: LifecycleAction
    job_id: str
    run_id: str
    name: str
    repository: str | None = None
    branch: str | None = None
    commit_sha: str | None = None
    workflow_name: str | None = None
    runner_name: str | None = None
    runner_os: str | None = None
    runner_labels: list[str] = Field(default_factory=list)
    installation_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    conclusion: Conclusion | None = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _completed_needs_conclusion(self) -> "LifecycleEvent":
        if self.action is LifecycleAction.COMPLETED and self.conclusion is None:
            raise ValueError("a completed event must carry a conclusion")
        return self


class LifecycleOutcome(BaseModel):
    """What the processor did with one event.

    status lifecycle:
        "processed" → the stored job was created or changed
        "ignored"   → duplicate, out-of-order, or unknown job; nothing changed

    archive is True when the caller should schedule log archival for the job
    (it just completed and has no log reference yet).
    """

    status: Literal["processed", "ignored"]
    job_id: str
    action: LifecycleAction
    reason: str | None = None
    archive: bool = False
