"""Job schema.

A Job is one execution unit on a self-hosted runner, identified by the
external (GitHub) job id. Its lifecycle state is a closed tagged variant so
that a conclusion can only exist on a completed job:

    Queued | InProgress | Completed(conclusion)

Records are frozen. Every mutation goes through model_copy(update=...) in
the lifecycle processor or ingestion service, never in place.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class JobStatus(str, Enum):
    """Lifecycle status values, matching GitHub's workflow_job actions."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Conclusion(str, Enum):
    """Terminal outcomes GitHub reports for a completed job."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    NEUTRAL = "neutral"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    STALE = "stale"


class Queued(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["queued"] = "queued"


class InProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["in_progress"] = "in_progress"


class Completed(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["completed"] = "completed"
    conclusion: Conclusion


JobState = Annotated[Union[Queued, InProgress, Completed], Field(discriminator="status")]


class Job(BaseModel):
    """One tracked CI job.

    Attributes:
        job_id: External job id. Globally unique and never changes.
        run_id: External workflow run id. Groups the jobs of one run.
        name: Job name from the workflow, or "Job <id>" for a provisional
            job created by telemetry before any lifecycle event arrived.
        state: Tagged lifecycle state. See the module docstring.
        repository: "owner/name" of the repository the job runs for.
        installation_id: GitHub App installation that owns the repository,
            when known.
        started_at: When the job started running. None while queued.
        completed_at: When the job reached its terminal state.
        log_reference: Where the archived execution log lives. Stays None
            until archival succeeds.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    run_id: str
    name: str
    state: JobState
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
    log_reference: str | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def status(self) -> JobStatus:
        return JobStatus(self.state.status)

    @computed_field
    @property
    def conclusion(self) -> Conclusion | None:
        return self.state.conclusion if isinstance(self.state, Completed) else None

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.state, Completed)

    @model_validator(mode="after")
    def _completed_after_started(self) -> "Job":
        if self.started_at and self.completed_at and self.completed_at < self.started_at:
            raise ValueError("completed_at must not be earlier than started_at")
        return self


class Installation(BaseModel):
    """Ownership context for a repository owner (user or organization).

    Telemetry for a job the service has never seen is only accepted when the
    repository owner has an installation record.
    """

    model_config = ConfigDict(frozen=True)

    installation_id: str
    account_login: str
    account_type: str = "Organization"
