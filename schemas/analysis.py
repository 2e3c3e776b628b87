"""Analysis result schemas.

An AnalysisResult is derived on demand from a job's metric series and never
stored. The same series always produces the same result.
"""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["low", "medium", "high"]


class MetricStats(BaseModel):
    """Aggregates of one metric over the series, in percent."""

    mean: float
    maximum: float
    minimum: float


class Insight(BaseModel):
    """One observation about the job's resource usage.

    Attributes:
        metric: Display name of the metric (e.g. "CPU Usage").
        observation: Human-readable finding with the relevant numbers.
        severity: How concerning the observation is: "low", "medium",
            or "high".
    """

    metric: str
    observation: str
    severity: Severity


class AnalysisResult(BaseModel):
    """Deterministic performance report for one job.

    Attributes:
        summary: Natural-language overview: duration, sample count, and
            average utilisation.
        insights: Ordered CPU, memory, disk, then execution-time insights.
        recommendations: Ordered follow-ups. Never empty: a single "healthy"
            entry is emitted when nothing triggered.
        sample_count: Number of samples the result was computed from.
        duration_seconds: Estimated run time (sample count × sampling
            interval).
        statistics: Per-metric aggregates keyed "cpu", "memory", "disk".
    """

    summary: str
    insights: list[Insight]
    recommendations: list[str]
    sample_count: int
    duration_seconds: int
    statistics: dict[str, MetricStats]


class Narrative(BaseModel):
    """Optional LLM-written explanation layered on top of an AnalysisResult."""

    summary: str
    key_finding: str
    suggestions: list[str] = Field(default_factory=list)


class JobAnalysis(AnalysisResult):
    """API response for POST /jobs/{id}/analyze.

    The deterministic fields are inherited unchanged. narrative is None when
    the narrator is disabled or failed.
    """

    job_id: str
    narrative: Narrative | None = None
