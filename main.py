"""Runner Pulse — CI job telemetry service.

This file handles three concerns:

1. Intake: receives runner telemetry (POST /metrics) and GitHub webhooks
   (POST /webhooks/github), validates them, and hands them to the core.

2. Follow-up: when a job completes, its log is archived as a background
   task so GitHub gets its 200 immediately.

3. Read API: job records, metric series, and on-demand analysis for the
   dashboard.

Flow after a workflow_job webhook arrives:
    POST /webhooks/github
        → validate signature
        → parse payload into a LifecycleEvent
        → LifecycleProcessor.handle() under the job's lock
        → return 200 + outcome to GitHub immediately

    background task (completed jobs only):
        → LogArchiver.archive(job_id)
        → download log from GitHub, store it, attach the reference

Run locally:
    uv run uvicorn main:app --reload
"""

import json
import logging
import logging.handlers
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from analysis.analyzer import MetricsAnalyzer
from analysis.engine import AnalysisEngine, NarrationClient
from analysis.narrator import JobNarrator
from core.archiver import LogArchiver
from core.config import Settings
from core.errors import NotFoundError, ValidationError
from core.ingestion import TelemetryIngestionService
from core.lifecycle import LifecycleProcessor
from core.locks import JobLocks
from core.store import InMemoryJobStore, JobStore
from integrations.archival import GitHubLogArchiver, LogArchivalAdapter
from integrations.github import (
    parse_installation_payload,
    parse_workflow_job_payload,
    verify_github_signature,
)
from integrations.log_storage import FileLogStorage
from llm.openrouter import OpenRouterClient
from schemas.analysis import JobAnalysis
from schemas.job import Installation

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)

_logging_configured = False


def configure_logging(settings: Settings) -> None:
    """Attach the rotating file handler and a console handler to the root logger.

    Safe to call more than once: handlers are only added the first time.
    """
    global _logging_configured

    root = logging.getLogger()
    root.setLevel(settings.log_level)
    if _logging_configured:
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    file_handler = logging.handlers.RotatingFileHandler(
        settings.log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
    )
    stream_handler = logging.StreamHandler()
    for handler in (file_handler, stream_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _logging_configured = True


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    store: JobStore | None = None,
    archival_adapter: LogArchivalAdapter | None = None,
    narrator: NarrationClient | None = None,
) -> FastAPI:
    """Wire the store, locks, and services into a FastAPI app.

    Every collaborator is created here and injected, so two apps never share
    state. Tests pass their own store, archival adapter, or narrator.

    Args:
        settings: Configuration. Defaults to Settings() read from the environment.
        store: Job store. Defaults to a fresh InMemoryJobStore.
        archival_adapter: Overrides the GitHub log archiver. When omitted,
            archival is enabled only if GITHUB_TOKEN is set.
        narrator: Overrides the LLM narrator. When omitted, the narrator is
            enabled only if OPENROUTER_API_KEY is set.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or Settings()
    configure_logging(settings)

    store = store or InMemoryJobStore()
    locks = JobLocks()
    log_storage = FileLogStorage(settings.log_storage_dir)

    processor = LifecycleProcessor(store, locks)
    ingestion = TelemetryIngestionService(store, locks)

    if archival_adapter is None and settings.github_token:
        archival_adapter = GitHubLogArchiver(log_storage, settings.github_token, settings.github_api_base)
    if archival_adapter is None:
        logger.warning("GITHUB_TOKEN not set; job log archival is disabled.")
        archiver = None
    else:
        archiver = LogArchiver(
            archival_adapter,
            store,
            locks,
            timeout_seconds=settings.archive_timeout_seconds,
            max_attempts=settings.archive_max_attempts,
            backoff_seconds=settings.archive_backoff_seconds,
        )

    if narrator is None and settings.openrouter_api_key:
        narrator = JobNarrator(llm=OpenRouterClient(settings.narrator_model, settings.openrouter_api_key))

    engine = AnalysisEngine(
        store,
        analyzer=MetricsAnalyzer(settings.sampling_interval_seconds),
        narrator=narrator,
        log_storage=log_storage,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for owner in settings.trusted_owners:
            await store.save_installation(Installation(
                installation_id=f"trusted-{owner}",
                account_login=owner,
            ))
        if settings.trusted_owners:
            logger.info("Seeded %d trusted owners.", len(settings.trusted_owners))
        yield

    app = FastAPI(title="Runner Pulse", lifespan=lifespan)

    # Allow the dashboard to call these endpoints from a different origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Health check
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # -----------------------------------------------------------------------
    # Telemetry intake
    # -----------------------------------------------------------------------

    @app.post("/metrics", status_code=202)
    async def ingest_metrics(request: Request):
        """Accept one telemetry sample from a runner.

        Returns 202 with the job id and derived rates, 400 for a malformed
        payload, 404 when the job is unknown and its owner is not installed.
        """
        raw = _decode_json(await request.body())
        try:
            result = await ingestion.ingest(raw)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))

        return {
            "status": "accepted",
            "job_id": result.job_id,
            "timestamp": result.timestamp.isoformat(),
            "created_job": result.created_job,
            "network_rx_rate": result.network_rx_rate,
            "network_tx_rate": result.network_tx_rate,
        }

    # -----------------------------------------------------------------------
    # GitHub webhook handler
    # -----------------------------------------------------------------------

    @app.post("/webhooks/lifecycle")
    @app.post("/webhooks/github")
    async def github_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_hub_signature_256: str | None = Header(default=None),
        x_github_event: str | None = Header(default=None),
    ):
        """Receive a GitHub webhook and apply it, returning immediately.

        workflow_job events drive the job state machine; installation events
        maintain ownership records. Log archival for a completed job is
        handed to a background task, so GitHub never waits on the download.
        """
        body = await request.body()

        # Signature verification
        if not x_hub_signature_256:
            logger.warning("Rejected webhook: missing X-Hub-Signature-256 header.")
            raise HTTPException(status_code=401, detail="Missing signature.")
        if settings.webhook_secret:
            if not verify_github_signature(body, x_hub_signature_256, settings.webhook_secret):
                logger.warning("Rejected webhook: invalid GitHub signature.")
                raise HTTPException(status_code=401, detail="Invalid signature.")
        else:
            logger.warning("GITHUB_WEBHOOK_SECRET not set, skipping signature check.")

        raw = _decode_json(body)

        if x_github_event == "ping":
            return {"status": "pong"}

        try:
            if x_github_event == "installation":
                return await _handle_installation(raw)
            if x_github_event != "workflow_job":
                logger.info("Ignoring webhook event '%s'.", x_github_event)
                return {"status": "ignored", "reason": f"event={x_github_event}"}

            event = parse_workflow_job_payload(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Failed to parse %s webhook payload: %s", x_github_event, exc)
            raise HTTPException(status_code=400, detail=f"Malformed payload: {exc}")

        if event is None:
            return {"status": "ignored", "reason": f"action={raw.get('action')}"}

        outcome = await processor.handle(event)

        # Runs after the response is sent
        if outcome.archive and archiver is not None:
            background_tasks.add_task(archiver.archive, outcome.job_id)

        return outcome.model_dump(mode="json")

    async def _handle_installation(raw: dict) -> dict:
        action, installation = parse_installation_payload(raw)
        if action == "created":
            await store.save_installation(installation)
            logger.info("Installation %s created for %s.", installation.installation_id, installation.account_login)
            return {"status": "processed", "action": action}
        if action == "deleted":
            removed = await store.delete_installation(installation.installation_id)
            logger.info("Installation %s deleted (known: %s).", installation.installation_id, removed)
            return {"status": "processed", "action": action}

        logger.info("Ignoring installation action '%s'.", action)
        return {"status": "ignored", "reason": f"action={action}"}

    # -----------------------------------------------------------------------
    # Read API (dashboard)
    # -----------------------------------------------------------------------

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str):
        """Return a job record and its metric series ordered by timestamp.

        Returns 404 if the job is unknown.
        """
        job = await store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found.")
        samples = await store.list_samples(job_id)
        return {
            "job": job.model_dump(mode="json"),
            "metrics": [sample.model_dump(mode="json") for sample in samples],
        }

    @app.get("/runs/{run_id}/jobs")
    async def list_run_jobs(run_id: str):
        """Return every job of a workflow run, ordered by start time."""
        jobs = await store.list_jobs_by_run(run_id)
        return {"run_id": run_id, "jobs": [job.model_dump(mode="json") for job in jobs]}

    @app.post("/jobs/{job_id}/analyze", response_model=JobAnalysis)
    async def analyze_job(job_id: str):
        """Run the analysis engine for one job.

        Returns 404 if the job has no metric samples yet.
        """
        try:
            return await engine.report(job_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))

    return app


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name} is not allowed")


def _decode_json(body: bytes) -> dict:
    try:
        raw = json.loads(body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON: {exc}")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object.")
    return raw


app = create_app()
