"""Error taxonomy shared by the ingestion, lifecycle, and archival layers.

Services raise these; only the HTTP layer in main.py turns them into status
codes. Mapping used by the routes:

    ValidationError  → 400, never retried
    NotFoundError    → 404, never retried
    UpstreamError    → logged, degrades gracefully (no status code of its own)
    ConflictIgnored  → logged at warning level, sender still gets 200
"""


class RunnerPulseError(Exception):
    """Base class for every error the core raises on purpose."""


class ValidationError(RunnerPulseError):
    """A payload is malformed or is missing a required field."""


class NotFoundError(RunnerPulseError):
    """The referenced job, sample series, or ownership context does not exist."""


class UpstreamError(RunnerPulseError):
    """An external log, API, or storage call failed.

    Attributes:
        retryable: False when retrying cannot help (e.g. no credentials
            configured). The archiver stops after the first attempt then.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ConflictIgnored(RunnerPulseError):
    """A lifecycle event arrived out of order or as a duplicate.

    The event is dropped without touching the stored job. From the sender's
    point of view delivery still succeeded.
    """
