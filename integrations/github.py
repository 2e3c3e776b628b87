"""GitHub integration client.

Responsible for three things:
1. Validating the HMAC signature on incoming GitHub webhooks
2. Parsing workflow_job and installation webhook bodies into our schemas
3. Downloading a job's execution log from the GitHub REST API

Log download needs a token (GITHUB_TOKEN). Without one, fetch_job_logs()
raises a non-retryable UpstreamError and the job simply keeps a null log
reference.

GitHub webhook reference:
https://docs.github.com/en/webhooks/webhook-events-and-payloads#workflow_job
"""

import hashlib
import hmac
import logging

import httpx

from core.errors import UpstreamError
from schemas.events import LifecycleEvent
from schemas.job import Installation

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
_RUNNER_OS_HINTS = ("ubuntu", "linux", "windows", "macos")


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

def sign_payload(body: bytes, secret: str) -> str:
    """Return the X-Hub-Signature-256 header value GitHub would send for body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(body: bytes, header_signature: str, secret: str) -> bool:
    """Verify the X-Hub-Signature-256 header GitHub attaches to every delivery.

    HMAC is computed over the raw body bytes, so this must run before any
    JSON parsing. The comparison is constant-time.

    Args:
        body: Raw request body bytes.
        header_signature: Value of the X-Hub-Signature-256 header,
            "sha256=<hex digest>".
        secret: The webhook secret configured on the GitHub App.

    Returns:
        True if the signature is valid, False otherwise (including a header
        without the "sha256=" prefix).
    """
    if not header_signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_payload(body, secret), header_signature)


# ---------------------------------------------------------------------------
# Webhook payload parsers
# ---------------------------------------------------------------------------

def parse_workflow_job_payload(raw: dict) -> LifecycleEvent | None:
    """Build a LifecycleEvent from a workflow_job webhook body.

    Shape (trimmed to what we read):
    {
        "action": "completed",
        "workflow_job": {
            "id": 29679449, "run_id": 5283938482, "name": "build",
            "head_branch": "main", "head_sha": "f83a...",
            "workflow_name": "CI", "runner_name": "runner-7",
            "labels": ["self-hosted", "linux", "x64"],
            "started_at": "2025-01-01T12:00:00Z",
            "completed_at": "2025-01-01T12:04:10Z",
            "conclusion": "success"
        },
        "repository": {"full_name": "acme/api"},
        "installation": {"id": 4711}
    }

    Args:
        raw: Parsed JSON body.

    Returns:
        The event, or None when the action is not part of the job state
        machine (e.g. "waiting"). The webhook handler reports those as
        ignored.

    Raises:
        KeyError: If workflow_job or one of its id fields is missing.
        ValueError: If workflow_job, repository or installation is not an
            object, or the fields fail schema validation (e.g. a completed
            event without a conclusion). pydantic's ValidationError is a
            ValueError, so the webhook handler catches both as "malformed".
    """
    action = raw["action"]
    job = _object(raw["workflow_job"], "workflow_job")

    if action not in {"queued", "in_progress", "completed"}:
        logger.info("Ignoring workflow_job action '%s' for job %s.", action, job.get("id"))
        return None

    labels = [str(label) for label in job.get("labels") or []]
    repository = _object(raw.get("repository") or {}, "repository")
    installation = _object(raw.get("installation") or {}, "installation")

    return LifecycleEvent.model_validate({
        "action": action,
        "job_id": str(job["id"]),
        "run_id": str(job["run_id"]),
        "name": job.get("name") or f"Job {job['id']}",
        "repository": repository.get("full_name"),
        "branch": job.get("head_branch"),
        "commit_sha": job.get("head_sha"),
        "workflow_name": job.get("workflow_name"),
        "runner_name": job.get("runner_name"),
        "runner_os": _runner_os(labels),
        "runner_labels": labels,
        "installation_id": str(installation["id"]) if "id" in installation else None,
        "started_at": job.get("started_at"),
        "completed_at": job.get("completed_at") if action == "completed" else None,
        "conclusion": job.get("conclusion") if action == "completed" else None,
    })


def parse_installation_payload(raw: dict) -> tuple[str, Installation]:
    """Extract the action and installation record from an installation webhook.

    Returns:
        (action, installation), action being e.g. "created" or "deleted".

    Raises:
        KeyError: If the installation id or account login is missing.
        ValueError: If installation or its account is not a JSON object.
    """
    installation = _object(raw["installation"], "installation")
    account = _object(installation.get("account") or {}, "installation.account")
    return raw["action"], Installation(
        installation_id=str(installation["id"]),
        account_login=account["login"],
        account_type=account.get("type") or "Organization",
    )


def _object(value: object, field: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{field} must be an object, got {type(value).__name__}")
    return value


def _runner_os(labels: list[str]) -> str | None:
    """Pick the OS-looking label (ubuntu-latest, windows-2022, macos-14...)."""
    for label in labels:
        if any(hint in label.lower() for hint in _RUNNER_OS_HINTS):
            return label
    return None


# ---------------------------------------------------------------------------
# Log download
# ---------------------------------------------------------------------------

async def fetch_job_logs(
    repository: str,
    job_id: str,
    token: str,
    api_base: str = "https://api.github.com",
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Download the plain-text execution log of one job.

    GitHub answers GET /repos/{owner}/{repo}/actions/jobs/{job_id}/logs with
    a redirect to a short-lived download URL; the client follows it.

    Args:
        repository: "owner/name".
        job_id: External job id.
        token: GitHub token with actions:read on the repository.
        api_base: REST API root. Overridable for GitHub Enterprise.
        transport: Optional httpx transport, used by tests.

    Returns:
        The log text.

    Raises:
        UpstreamError: No token (not retryable), a bad repository name (not
            retryable), a 404 (not retryable: the log is gone or was never
            produced), or any other HTTP / network failure (retryable).
    """
    if not token:
        raise UpstreamError("GITHUB_TOKEN not set; cannot download job logs", retryable=False)
    if "/" not in repository:
        raise UpstreamError(f"invalid repository name '{repository}'", retryable=False)

    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    try:
        async with httpx.AsyncClient(
            base_url=api_base,
            headers=headers,
            timeout=30,
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(f"/repos/{repository}/actions/jobs/{job_id}/logs")
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        raise UpstreamError(
            f"GitHub returned {status} for logs of job {job_id}",
            retryable=status != 404,
        ) from exc
    except httpx.HTTPError as exc:
        raise UpstreamError(f"log download for job {job_id} failed: {exc}") from exc

    logger.info("Downloaded %d bytes of logs for job %s.", len(response.content), job_id)
    return response.text

