"""Analysis engine: on-demand performance report for one job.

AnalysisEngine is what POST /jobs/{id}/analyze calls. It reads a snapshot of
the job's metric series, hands it to the deterministic MetricsAnalyzer and,
when a narrator is configured, layers an LLM narrative on top.

Pipeline order inside report():
    1. Read the job's samples (a copy, no lock taken)
    2. Run MetricsAnalyzer over them
    3. Load the archived log, if any (failures mean empty logs)
    4. Ask the narrator for a narrative, if one is configured

The deterministic fields of the result never depend on steps 3 and 4.
"""

import logging
from typing import Protocol

from analysis.analyzer import MetricsAnalyzer
from core.errors import NotFoundError, UpstreamError
from core.store import JobStore
from integrations.log_storage import FileLogStorage
from schemas.analysis import AnalysisResult, JobAnalysis, Narrative
from schemas.job import Job

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Builds AnalysisResult / JobAnalysis reports from stored telemetry.

    Attributes:
        _store: Source of jobs and samples.
        _analyzer: The deterministic analyzer.
        _narrator: Optional narrative generator. None disables narratives.
        _log_storage: Where archived logs are read from. None means the
            narrator always sees empty logs.
    """

    def __init__(
        self,
        store: JobStore,
        analyzer: MetricsAnalyzer | None = None,
        narrator: "NarrationClient | None" = None,
        log_storage: FileLogStorage | None = None,
    ) -> None:
        self._store = store
        self._analyzer = analyzer or MetricsAnalyzer()
        self._narrator = narrator
        self._log_storage = log_storage

    async def analyze(self, job_id: str) -> AnalysisResult:
        """Run the deterministic analysis for one job.

        Args:
            job_id: External job id.

        Returns:
            The AnalysisResult for the job's current series.

        Raises:
            NotFoundError: If the job has no samples.
        """
        samples = await self._store.list_samples(job_id)
        if not samples:
            raise NotFoundError(f"no metrics found for job {job_id}")

        result = self._analyzer.analyze(samples)
        logger.info(
            "Analyzed job %s: %d samples, %d recommendations.",
            job_id,
            result.sample_count,
            len(result.recommendations),
        )
        return result

    async def report(self, job_id: str) -> JobAnalysis:
        """Run analyze() and attach a narrative when a narrator is configured.

        Raises:
            NotFoundError: If the job has no samples.
        """
        result = await self.analyze(job_id)
        narrative = None

        if self._narrator is not None:
            job = await self._store.get_job(job_id)
            if job is not None:
                logs = await self._load_logs(job)
                narrative = await self._narrator.narrate(job, result, logs)

        return JobAnalysis(job_id=job_id, narrative=narrative, **result.model_dump())

    # ── Private ───────────────────────────────────────────────────────────────

    async def _load_logs(self, job: Job) -> str:
        if self._log_storage is None or job.log_reference is None:
            return ""
        try:
            return await self._log_storage.load(job.job_id) or ""
        except UpstreamError as exc:
            logger.error("Could not load archived logs for job %s: %s", job.job_id, exc)
            return ""


class NarrationClient(Protocol):
    """Protocol for post-analysis narrative components."""

    async def narrate(self, job: Job, result: AnalysisResult, logs: str) -> Narrative:
        """Explain an analysis result in plain English."""
