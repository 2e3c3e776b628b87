"""Runner Pulse — offline replay CLI.

Replays a file of raw telemetry payloads (the bodies runners POST to
/metrics, as kept in each sample's raw_payload) through a fresh in-memory
ingestion service, then renders the analysis for every job in the file.

Accepts either a JSON array of payloads or one payload per line (JSONL).
Every repository owner found in the file is treated as installed, so
unknown jobs are created the way the live service would create them.

Usage:
    uv run python cli.py replay fixtures/job_samples.jsonl
    uv run python cli.py replay samples.json --job-id 29679449 --interval 10
"""

import argparse
import asyncio
import json
import pathlib
import sys

from rich.console import Console
from rich.table import Table

from analysis.analyzer import DEFAULT_SAMPLING_INTERVAL_SECONDS, MetricsAnalyzer
from analysis.engine import AnalysisEngine
from core.errors import NotFoundError, ValidationError
from core.ingestion import TelemetryIngestionService
from core.locks import JobLocks
from core.store import InMemoryJobStore
from schemas.analysis import AnalysisResult
from schemas.job import Installation

console = Console()

_SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "dim"}


# ── Loading ───────────────────────────────────────────────────────────────────

def load_payloads(path: pathlib.Path) -> list[dict]:
    """Read a JSON array or JSONL file of raw payloads.

    Raises:
        OSError: The file cannot be read.
        ValueError: The content is neither a JSON array nor JSON lines.
    """
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []

    if text.startswith("["):
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError("expected a JSON array of payloads")
        return data

    return [json.loads(line) for line in text.splitlines() if line.strip()]


def _owners(payloads: list[dict]) -> set[str]:
    owners = set()
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        context = payload.get("context") or payload.get("github_context") or {}
        repository = context.get("repository") if isinstance(context, dict) else None
        if isinstance(repository, str) and "/" in repository:
            owners.add(repository.split("/", 1)[0])
    return owners


# ── Replay ────────────────────────────────────────────────────────────────────

async def replay(
    payloads: list[dict],
    job_id: str | None = None,
    interval: int = DEFAULT_SAMPLING_INTERVAL_SECONDS,
) -> tuple[dict[str, AnalysisResult], int]:
    """Ingest payloads in file order and analyze the jobs that received samples.

    Args:
        payloads: Raw payloads, in the order they should be ingested.
        job_id: If set, only this job is analyzed.
        interval: Sampling interval used for the duration estimate.

    Returns:
        (results keyed by job id, number of rejected payloads).
    """
    store = InMemoryJobStore()
    for owner in sorted(_owners(payloads)):
        await store.save_installation(Installation(installation_id=f"replay-{owner}", account_login=owner))

    ingestion = TelemetryIngestionService(store, JobLocks())
    accepted: list[str] = []
    rejected = 0

    for index, payload in enumerate(payloads, 1):
        try:
            result = await ingestion.ingest(payload)
        except (ValidationError, NotFoundError) as exc:
            rejected += 1
            console.print(f"[yellow]payload {index} rejected:[/yellow] {exc}")
            continue
        if job_id is not None and result.job_id != job_id:
            continue
        if result.job_id not in accepted:
            accepted.append(result.job_id)

    engine = AnalysisEngine(store, analyzer=MetricsAnalyzer(interval))
    return {jid: await engine.analyze(jid) for jid in accepted}, rejected


# ── Rendering ─────────────────────────────────────────────────────────────────

def _print_result(job_id: str, result: AnalysisResult) -> None:
    console.rule(f"[bold]Job {job_id}[/bold]")
    console.print(result.summary)

    stats = Table(title="Resource Usage (%)", border_style="bright_black")
    stats.add_column("Metric", style="bold")
    stats.add_column("Mean", justify="right")
    stats.add_column("Max", justify="right")
    stats.add_column("Min", justify="right")
    for name, values in result.statistics.items():
        stats.add_row(name, f"{values.mean:.1f}", f"{values.maximum:.1f}", f"{values.minimum:.1f}")

    insights = Table(title="Insights", show_lines=True, border_style="bright_black")
    insights.add_column("Metric", style="bold", min_width=14)
    insights.add_column("Severity", width=10, justify="center")
    insights.add_column("Observation")
    for insight in result.insights:
        color = _SEVERITY_COLORS[insight.severity]
        insights.add_row(insight.metric, f"[{color}]{insight.severity}[/{color}]", insight.observation)

    console.print()
    console.print(stats)
    console.print(insights)
    console.print("\n[bold]Recommendations[/bold]")
    for i, recommendation in enumerate(result.recommendations, 1):
        console.print(f"  {i}. {recommendation}")
    console.print()


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Runner Pulse offline tools")
    subcommands = parser.add_subparsers(dest="command", required=True)

    replay_cmd = subcommands.add_parser("replay", help="Replay raw telemetry and analyze it")
    replay_cmd.add_argument("file", type=pathlib.Path, help="JSON array or JSONL of payloads")
    replay_cmd.add_argument("--job-id", help="Only analyze this job")
    replay_cmd.add_argument(
        "--interval",
        type=int,
        default=DEFAULT_SAMPLING_INTERVAL_SECONDS,
        help="Sampling interval in seconds (duration estimate)",
    )
    args = parser.parse_args(argv)

    try:
        payloads = load_payloads(args.file)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot read {args.file}: {exc}[/red]")
        return 1
    if not payloads:
        console.print(f"[red]{args.file} contains no payloads.[/red]")
        return 1

    results, rejected = asyncio.run(replay(payloads, args.job_id, args.interval))
    if not results:
        console.print(f"[red]No payloads accepted ({rejected} rejected).[/red]")
        return 1

    for job_id, result in results.items():
        _print_result(job_id, result)

    console.print(f"[dim]{len(payloads)} payloads, {rejected} rejected, {len(results)} jobs[/dim]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
