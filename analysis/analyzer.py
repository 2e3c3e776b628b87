"""Metrics analyzer — deterministic report from a job's telemetry series.

Detects:
- CPU pressure: peak usage > 90% (high) or > 70% (medium)
- Memory pressure: peak usage > 85% (high) or > 70% (medium)
- Disk pressure: average usage > 85% (high) or > 70% (medium)
- Late-stage CPU growth: second-half mean > 1.5x first-half mean

No LLM involved. Same input always produces the same output.
"""

from statistics import fmean
from typing import Sequence

from schemas.analysis import AnalysisResult, Insight, MetricStats, Severity
from schemas.metric import MetricSample

DEFAULT_SAMPLING_INTERVAL_SECONDS = 15

HEALTHY_RECOMMENDATION = (
    "Your job execution looks healthy! No major optimizations needed at this time."
)


class MetricsAnalyzer:
    """Turn an ordered list of MetricSample into an AnalysisResult."""

    CPU_HIGH_THRESHOLD = 90.0      # peak percent
    CPU_MEDIUM_THRESHOLD = 70.0
    MEMORY_HIGH_THRESHOLD = 85.0   # peak percent
    MEMORY_MEDIUM_THRESHOLD = 70.0
    DISK_HIGH_THRESHOLD = 85.0     # average percent
    DISK_MEDIUM_THRESHOLD = 70.0
    TREND_MULTIPLIER = 1.5         # second-half mean must exceed this multiple of the first
    HIGH_USAGE_SUMMARY_THRESHOLD = 80.0

    def __init__(self, sampling_interval_seconds: int = DEFAULT_SAMPLING_INTERVAL_SECONDS) -> None:
        self.sampling_interval_seconds = sampling_interval_seconds

    def analyze(self, samples: Sequence[MetricSample]) -> AnalysisResult:
        """Compute statistics, insights and recommendations for a series.

        Args:
            samples: The job's samples ordered by timestamp. Samples that do
                not report a metric are skipped for that metric only.

        Returns:
            The AnalysisResult. recommendations always holds at least one
            entry.

        Raises:
            ValueError: If samples is empty.
        """
        if not samples:
            raise ValueError("cannot analyze an empty series")

        cpu_series = [s.cpu_usage_percent for s in samples if s.cpu_usage_percent is not None]
        memory_series = [s.memory_usage_percent for s in samples if s.memory_usage_percent is not None]
        disk_series = [s.disk_usage_percent for s in samples if s.disk_usage_percent is not None]

        stats = {
            "cpu": _stats(cpu_series),
            "memory": _stats(memory_series),
            "disk": _stats(disk_series),
        }

        insights: list[Insight] = []
        recommendations: list[str] = []

        for check, key in (
            (self._check_cpu, "cpu"),
            (self._check_memory, "memory"),
            (self._check_disk, "disk"),
        ):
            insight, recs = check(stats[key])
            insights.append(insight)
            recommendations.extend(recs)

        duration = len(samples) * self.sampling_interval_seconds
        minutes, seconds = divmod(duration, 60)
        insights.append(Insight(
            metric="Execution Time",
            observation=(
                f"Job ran for approximately {minutes}m {seconds}s "
                f"with {len(samples)} data points collected."
            ),
            severity="low",
        ))

        recommendations.extend(self._check_trend(cpu_series))

        if not recommendations:
            recommendations.append(HEALTHY_RECOMMENDATION)

        return AnalysisResult(
            summary=self._summary(len(samples), minutes, stats),
            insights=insights,
            recommendations=recommendations,
            sample_count=len(samples),
            duration_seconds=duration,
            statistics=stats,
        )

    # ── Private ───────────────────────────────────────────────────────────────

    def _check_cpu(self, cpu: MetricStats) -> tuple[Insight, list[str]]:
        if cpu.maximum > self.CPU_HIGH_THRESHOLD:
            return _insight(
                "CPU Usage",
                f"Peak CPU usage reached {cpu.maximum:.1f}%, indicating intensive "
                f"computational work. Average CPU usage was {cpu.mean:.1f}%.",
                "high",
            ), ["Consider upgrading to a runner with more CPU cores for compute-intensive workflows"]

        if cpu.maximum > self.CPU_MEDIUM_THRESHOLD:
            return _insight(
                "CPU Usage",
                f"Moderate CPU usage observed with peaks at {cpu.maximum:.1f}%. "
                f"Average usage was {cpu.mean:.1f}%.",
                "medium",
            ), ["CPU usage is healthy but monitor for trends over time"]

        return _insight(
            "CPU Usage",
            f"CPU usage remained low with an average of {cpu.mean:.1f}% "
            f"and peak of {cpu.maximum:.1f}%.",
            "low",
        ), []

    def _check_memory(self, memory: MetricStats) -> tuple[Insight, list[str]]:
        if memory.maximum > self.MEMORY_HIGH_THRESHOLD:
            return _insight(
                "Memory Usage",
                f"Memory usage reached {memory.maximum:.1f}%, which is approaching "
                f"critical levels. Average usage was {memory.mean:.1f}%.",
                "high",
            ), [
                "Consider optimizing memory usage or upgrading to a runner with more RAM",
                "Review application for potential memory leaks or inefficient memory allocation",
            ]

        if memory.maximum > self.MEMORY_MEDIUM_THRESHOLD:
            return _insight(
                "Memory Usage",
                f"Memory usage was moderate with peaks at {memory.maximum:.1f}% "
                f"and average of {memory.mean:.1f}%.",
                "medium",
            ), ["Memory usage is acceptable but could benefit from optimization"]

        return _insight(
            "Memory Usage",
            f"Memory usage remained healthy with an average of {memory.mean:.1f}% "
            f"and peak of {memory.maximum:.1f}%.",
            "low",
        ), []

    def _check_disk(self, disk: MetricStats) -> tuple[Insight, list[str]]:
        # Disk is judged on the average: it grows slowly and a single peak
        # says little.
        if disk.mean > self.DISK_HIGH_THRESHOLD:
            return _insight(
                "Disk Usage",
                f"Disk usage is high at {disk.mean:.1f}%, which may impact performance "
                f"and leave little room for temporary files.",
                "high",
            ), ["Clean up unnecessary files or increase disk space allocation"]

        if disk.mean > self.DISK_MEDIUM_THRESHOLD:
            return _insight(
                "Disk Usage",
                f"Disk usage is at {disk.mean:.1f}%, approaching high levels.",
                "medium",
            ), ["Monitor disk usage and plan for cleanup if needed"]

        return _insight(
            "Disk Usage",
            f"Disk usage is healthy at {disk.mean:.1f}% with adequate free space available.",
            "low",
        ), []

    def _check_trend(self, cpu_series: list[float]) -> list[str]:
        middle = len(cpu_series) // 2
        first, second = cpu_series[:middle], cpu_series[middle:]
        if not first or not second:
            return []

        if fmean(second) <= fmean(first) * self.TREND_MULTIPLIER:
            return []

        return [
            "CPU usage increased significantly during execution. "
            "Consider parallelizing tasks or optimizing late-stage operations"
        ]

    def _summary(self, count: int, minutes: int, stats: dict[str, MetricStats]) -> str:
        cpu, memory, disk = stats["cpu"], stats["memory"], stats["disk"]
        if max(cpu.maximum, memory.maximum) > self.HIGH_USAGE_SUMMARY_THRESHOLD:
            verdict = (
                "High resource usage was observed during execution, "
                "which may indicate optimization opportunities."
            )
        else:
            verdict = "Resource usage remained within healthy limits throughout execution."

        return (
            f"The job ran with {count} data points collected over approximately "
            f"{minutes} minutes. Average resource utilization: CPU {cpu.mean:.1f}%, "
            f"Memory {memory.mean:.1f}%, Disk {disk.mean:.1f}%. {verdict}"
        )


def _stats(values: list[float]) -> MetricStats:
    if not values:
        return MetricStats(mean=0.0, maximum=0.0, minimum=0.0)
    return MetricStats(mean=fmean(values), maximum=max(values), minimum=min(values))


def _insight(metric: str, observation: str, severity: Severity) -> Insight:
    return Insight(metric=metric, observation=observation, severity=severity)
