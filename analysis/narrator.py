"""Job Narrator — explains a deterministic analysis in plain English."""

import json
import logging
import pathlib

import openai

from llm.base import LLMClient
from schemas.analysis import AnalysisResult, Narrative
from schemas.job import Job
from utils.parse import LLMParseError, parse_llm_json

logger = logging.getLogger(__name__)

_PROMPT_FILE = pathlib.Path(__file__).parent.parent / "prompts" / "job_narrator.txt"

MAX_LOG_LINES = 200
MAX_SUGGESTIONS = 4


class JobNarrator:
    """Generates a Narrative from a job, its AnalysisResult and its log tail.

    This component never changes the analysis. It only explains it, and it
    never raises: any LLM failure yields a narrative built from the
    deterministic result.
    """

    name = "job_narrator"

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm
        self._system_prompt = _PROMPT_FILE.read_text()

    async def narrate(self, job: Job, result: AnalysisResult, logs: str) -> Narrative:
        """Return a narrative for one analyzed job."""
        job_view = job.model_dump(
            mode="json",
            include={"job_id", "name", "repository", "branch", "workflow_name",
                     "runner_name", "runner_os", "status", "conclusion"},
        )
        user_message = (
            f"Job:\n{json.dumps(job_view, indent=2)}\n\n"
            f"Analysis:\n{result.model_dump_json(indent=2)}\n\n"
            f"Log tail:\n{tail_lines(logs, MAX_LOG_LINES)}"
        )

        try:
            raw = await self.llm.complete(system=self._system_prompt, user=user_message)
            parsed = parse_llm_json(raw, Narrative)
            return parsed.model_copy(update={"suggestions": parsed.suggestions[:MAX_SUGGESTIONS]})
        except LLMParseError as exc:
            logger.error("job_narrator: failed to parse LLM response: %s\nRaw: %s", exc, exc.raw)
        except openai.APIError as exc:
            logger.error("job_narrator: LLM call failed for job %s: %s", job.job_id, exc)

        return fallback_narrative(result)


def fallback_narrative(result: AnalysisResult) -> Narrative:
    """Deterministic narrative used when the LLM output is unusable."""
    ranked = sorted(
        result.insights,
        key=lambda insight: {"high": 0, "medium": 1, "low": 2}[insight.severity],
    )
    top = ranked[0]
    return Narrative(
        summary=result.summary,
        key_finding=f"{top.metric}: {top.observation}",
        suggestions=result.recommendations[:MAX_SUGGESTIONS],
    )


def tail_lines(text: str, count: int) -> str:
    """Return the last count lines of text."""
    return "\n".join(text.splitlines()[-count:])
