"""Telemetry ingestion service.

Turns one raw /metrics body into one stored MetricSample:

    validate payload
        → (under the job's lock)
        → resolve the owning job, creating a provisional one if needed
        → read the job's latest stored sample
        → derive network rates against it
        → write the sample (and the provisional job) in one store call

Telemetry and lifecycle webhooks travel on independent paths, so samples for
a job often arrive before its first lifecycle event. A provisional job is
created in that case, but only when the repository owner has an installation
record; otherwise the sample is rejected with NotFoundError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import pydantic

from core.errors import NotFoundError, ValidationError
from core.locks import JobLocks
from core.store import JobStore
from schemas.job import InProgress, Job
from schemas.metric import MetricPayload, MetricSample
from telemetry.rates import derive_network_rates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Acknowledgement for one accepted sample.

    Attributes:
        job_id: The job the sample was stored against.
        timestamp: The sample's timestamp (UTC).
        created_job: True if this sample created a provisional job.
        network_rx_rate: Derived receive rate, bytes per second.
        network_tx_rate: Derived transmit rate, bytes per second.
    """

    job_id: str
    timestamp: datetime
    created_job: bool
    network_rx_rate: float
    network_tx_rate: float


class TelemetryIngestionService:
    """Validates, enriches, and persists telemetry samples."""

    def __init__(
        self,
        store: JobStore,
        locks: JobLocks,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._locks = locks
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest(self, raw: dict[str, Any]) -> IngestResult:
        """Validate and store one telemetry sample.

        Args:
            raw: The decoded JSON body exactly as the runner sent it. It is
                stored verbatim on the sample.

        Returns:
            IngestResult describing the stored sample.

        Raises:
            ValidationError: The payload is not a JSON object, or the
                timestamp, job context, or system section is missing or
                malformed.
            NotFoundError: The job is unknown and no installation exists
                for the repository owner.
        """
        payload = self._validate(raw)
        job_id = payload.context.job_id

        async with self._locks.hold(job_id):
            job = await self._store.get_job(job_id)
            provisional = None
            if job is None:
                provisional = await self._provisional_job(payload)

            previous = await self._store.latest_sample(job_id)
            sample = self._build_sample(payload, raw, previous)
            await self._store.append_sample(sample, provisional_job=provisional)

        if provisional is not None:
            logger.info(
                "Created provisional job %s for %s from telemetry.",
                job_id,
                provisional.repository,
            )
        logger.debug(
            "Stored sample for job %s at %s (rx %.1f B/s, tx %.1f B/s).",
            job_id,
            sample.timestamp.isoformat(),
            sample.network_rx_rate,
            sample.network_tx_rate,
        )

        return IngestResult(
            job_id=job_id,
            timestamp=sample.timestamp,
            created_job=provisional is not None,
            network_rx_rate=sample.network_rx_rate,
            network_tx_rate=sample.network_tx_rate,
        )

    # ── Private ───────────────────────────────────────────────────────────────

    def _validate(self, raw: Any) -> MetricPayload:
        if not isinstance(raw, dict):
            raise ValidationError("metric payload must be a JSON object")
        try:
            return MetricPayload.model_validate(raw)
        except pydantic.ValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in error["loc"]) or "<root>"
                for error in exc.errors()
            )
            raise ValidationError(f"invalid metric payload: {fields}") from exc

    async def _provisional_job(self, payload: MetricPayload) -> Job:
        """Build (but do not store) a provisional job for an unknown id."""
        context = payload.context
        if not context.repository or "/" not in context.repository:
            raise NotFoundError(
                f"job {context.job_id} is unknown and the payload names no repository"
            )

        owner = context.repository.split("/", 1)[0]
        installation = await self._store.get_installation(owner)
        if installation is None:
            logger.warning("No installation found for repository %s.", context.repository)
            raise NotFoundError(f"no installation found for repository {context.repository}")

        now = self._clock()
        return Job(
            job_id=context.job_id,
            run_id=context.run_id,
            name=f"Job {context.job_id}",
            state=InProgress(),
            repository=context.repository,
            installation_id=installation.installation_id,
            started_at=now,
            created_at=now,
            updated_at=now,
        )

    def _build_sample(
        self,
        payload: MetricPayload,
        raw: dict[str, Any],
        previous: MetricSample | None,
    ) -> MetricSample:
        system = payload.system
        disk = system.disk[0] if system.disk else None
        network = system.network[0].stats if system.network else None
        rx_bytes = network.rx_bytes if network else None
        tx_bytes = network.tx_bytes if network else None

        rx_rate, tx_rate = derive_network_rates(previous, rx_bytes, tx_bytes, payload.timestamp)

        return MetricSample(
            job_id=payload.context.job_id,
            timestamp=payload.timestamp,
            hostname=system.info.hostname,
            cpu_cores=system.cpu.cores,
            cpu_usage_percent=system.cpu.effective_usage,
            memory_total_bytes=system.memory.total_bytes,
            memory_used_bytes=system.memory.used_bytes,
            memory_usage_percent=system.memory.usage_percent,
            disk_usage_percent=disk.use_percentage if disk else None,
            network_rx_bytes=rx_bytes,
            network_tx_bytes=tx_bytes,
            network_rx_rate=rx_rate,
            network_tx_rate=tx_rate,
            top_processes=list(system.top_processes),
            raw_payload=raw,
            received_at=self._clock(),
        )
