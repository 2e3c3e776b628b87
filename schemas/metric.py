"""Telemetry schemas.

MetricPayload is the wire format a runner-side collector POSTs to /metrics.
MetricSample is what the ingestion service stores: a flattened view of the
payload plus the network rates derived at write time, with the raw payload
kept verbatim for replay.

Only timestamp, context.job_id, context.run_id and system are mandatory.
Collectors differ in which system fields they report, so every measurement
is optional and absent values stay None on the stored sample.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Inbound payload
# ---------------------------------------------------------------------------

class _InboundModel(BaseModel):
    # json.loads accepts NaN and Infinity; neither is a real measurement.
    model_config = ConfigDict(allow_inf_nan=False)


class JobContext(_InboundModel):
    """Which job a sample belongs to.

    Attributes:
        job_id: External job id. Collectors send it as a number; it is
            always stored as a string.
        run_id: External run id, same coercion as job_id.
        repository: "owner/name". Needed to resolve ownership when the
            job is not known yet.
    """

    job_id: str
    run_id: str
    repository: str | None = None

    @field_validator("job_id", "run_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("id must be a string or integer")
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and not value.strip():
            raise ValueError("id must not be empty")
        return value


class HostInfo(_InboundModel):
    hostname: str | None = None
    kernel: str | None = None
    uptime_seconds: float | None = None


class CpuUsage(_InboundModel):
    usage_percent: float


class CpuInfo(_InboundModel):
    cores: int | None = None
    model: str | None = None
    current_usage: CpuUsage | None = None
    # Older collectors report usage at the top level instead.
    usage_percent: float | None = None

    @property
    def effective_usage(self) -> float | None:
        if self.current_usage is not None:
            return self.current_usage.usage_percent
        return self.usage_percent


class MemoryInfo(_InboundModel):
    total_bytes: int | None = None
    used_bytes: int | None = None
    usage_percent: float | None = None


class DiskInfo(_InboundModel):
    filesystem: str | None = None
    size_bytes: int | None = None
    used_bytes: int | None = None
    use_percentage: float | None = None
    mounted_on: str | None = None


class NetworkStats(_InboundModel):
    rx_bytes: int
    tx_bytes: int


class NetworkInterface(_InboundModel):
    interface: str | None = None
    state: str | None = None
    stats: NetworkStats


class ProcessSnapshot(_InboundModel):
    """One entry of the collector's top-process list."""

    pid: int
    cpu: float
    mem: float
    user: str | None = None
    command: str


class SystemSnapshot(_InboundModel):
    info: HostInfo = Field(default_factory=HostInfo)
    cpu: CpuInfo = Field(default_factory=CpuInfo)
    memory: MemoryInfo = Field(default_factory=MemoryInfo)
    disk: list[DiskInfo] = Field(default_factory=list)
    network: list[NetworkInterface] = Field(default_factory=list)
    top_processes: list[ProcessSnapshot] = Field(default_factory=list)


class MetricPayload(_InboundModel):
    """One telemetry POST from a runner.

    The job context arrives as "context"; "github_context" is accepted too,
    since that is what the runner-side collector script sends.
    """

    timestamp: datetime
    context: JobContext = Field(validation_alias=AliasChoices("context", "github_context"))
    system: SystemSnapshot

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


# ---------------------------------------------------------------------------
# Stored sample
# ---------------------------------------------------------------------------

class MetricSample(BaseModel):
    """One stored telemetry point for a job.

    network_rx_rate / network_tx_rate are bytes per second against the
    immediately preceding stored sample. They are 0.0 when there is no such
    sample, when this sample is not strictly later, or when the counter went
    backwards (reset or wraparound).
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    timestamp: datetime
    hostname: str | None = None
    cpu_cores: int | None = None
    cpu_usage_percent: float | None = None
    memory_total_bytes: int | None = None
    memory_used_bytes: int | None = None
    memory_usage_percent: float | None = None
    disk_usage_percent: float | None = None
    network_rx_bytes: int | None = None
    network_tx_bytes: int | None = None
    network_rx_rate: float = 0.0
    network_tx_rate: float = 0.0
    top_processes: list[ProcessSnapshot] = Field(default_factory=list)
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
