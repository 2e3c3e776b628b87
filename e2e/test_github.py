"""Tests for the GitHub integration layer.

Covers signature verification, webhook payload parsing, and log download.
Log download runs against httpx.MockTransport, so there are no network calls
and no tokens involved.
"""

import hashlib
import hmac

import httpx
import pytest

from core.errors import UpstreamError
from integrations.github import (
    fetch_job_logs,
    parse_installation_payload,
    parse_workflow_job_payload,
    sign_payload,
    verify_github_signature,
)
from schemas.events import LifecycleAction
from schemas.job import Conclusion


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_signature(body: bytes, secret: str) -> str:
    """Compute the X-Hub-Signature-256 value the way GitHub does."""
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def make_workflow_job_payload(action: str = "in_progress", **job_overrides) -> dict:
    """Minimal workflow_job webhook body."""
    job = {
        "id": 29679449,
        "run_id": 5283938482,
        "name": "build",
        "head_branch": "main",
        "head_sha": "f83a356d",
        "workflow_name": "CI",
        "runner_name": "runner-7",
        "labels": ["self-hosted", "ubuntu-22.04", "x64"],
        "started_at": "2025-01-01T12:00:00Z",
        "completed_at": None,
        "conclusion": None,
    }
    job.update(job_overrides)
    return {
        "action": action,
        "workflow_job": job,
        "repository": {"full_name": "acme/api"},
        "installation": {"id": 4711},
    }


# ── verify_github_signature ───────────────────────────────────────────────────

class TestVerifyGitHubSignature:
    def test_valid_signature_passes(self):
        body = b'{"action": "queued"}'
        assert verify_github_signature(body, make_signature(body, "s3cret"), "s3cret") is True

    def test_sign_payload_matches_github_format(self):
        body = b'{"zen": "Keep it logically awesome."}'
        assert sign_payload(body, "s3cret") == make_signature(body, "s3cret")

    def test_wrong_secret_fails(self):
        body = b'{"action": "queued"}'
        assert verify_github_signature(body, make_signature(body, "right"), "wrong") is False

    def test_tampered_body_fails(self):
        body = b'{"action": "queued"}'
        signature = make_signature(body, "s3cret")
        assert verify_github_signature(b'{"action": "completed"}', signature, "s3cret") is False

    def test_missing_prefix_fails(self):
        body = b"{}"
        bare = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert verify_github_signature(body, bare, "s3cret") is False


# ── parse_workflow_job_payload ────────────────────────────────────────────────

class TestParseWorkflowJobPayload:
    def test_parses_in_progress(self):
        event = parse_workflow_job_payload(make_workflow_job_payload())
        assert event.action is LifecycleAction.IN_PROGRESS
        assert event.job_id == "29679449"
        assert event.run_id == "5283938482"
        assert event.repository == "acme/api"
        assert event.installation_id == "4711"
        assert event.runner_os == "ubuntu-22.04"
        assert event.conclusion is None

    def test_parses_completed(self):
        event = parse_workflow_job_payload(make_workflow_job_payload(
            "completed", completed_at="2025-01-01T12:04:10Z", conclusion="failure",
        ))
        assert event.action is LifecycleAction.COMPLETED
        assert event.conclusion is Conclusion.FAILURE
        assert event.completed_at.minute == 4

    def test_conclusion_ignored_for_non_terminal_actions(self):
        event = parse_workflow_job_payload(make_workflow_job_payload("queued", conclusion="success"))
        assert event.conclusion is None

    def test_completed_without_conclusion_raises(self):
        with pytest.raises(ValueError):
            parse_workflow_job_payload(make_workflow_job_payload("completed"))

    def test_waiting_action_is_ignored(self):
        assert parse_workflow_job_payload(make_workflow_job_payload("waiting")) is None

    def test_missing_workflow_job_raises(self):
        with pytest.raises(KeyError):
            parse_workflow_job_payload({"action": "queued"})

    @pytest.mark.parametrize("field", ["workflow_job", "repository", "installation"])
    def test_non_object_section_raises(self, field):
        payload = make_workflow_job_payload()
        payload[field] = "acme/api"
        with pytest.raises(ValueError, match=field):
            parse_workflow_job_payload(payload)

    def test_missing_name_falls_back_to_id(self):
        event = parse_workflow_job_payload(make_workflow_job_payload(name=None))
        assert event.name == "Job 29679449"

    def test_runner_os_none_without_os_label(self):
        event = parse_workflow_job_payload(make_workflow_job_payload(labels=["self-hosted", "gpu"]))
        assert event.runner_os is None


# ── parse_installation_payload ────────────────────────────────────────────────

class TestParseInstallationPayload:
    def test_parses_created(self):
        action, installation = parse_installation_payload({
            "action": "created",
            "installation": {"id": 4711, "account": {"login": "acme", "type": "Organization"}},
        })
        assert action == "created"
        assert installation.installation_id == "4711"
        assert installation.account_login == "acme"

    def test_missing_account_login_raises(self):
        with pytest.raises(KeyError):
            parse_installation_payload({"action": "created", "installation": {"id": 1, "account": {}}})

    def test_installation_list_raises(self):
        with pytest.raises(ValueError, match="installation"):
            parse_installation_payload({"action": "created", "installation": [1]})

    def test_account_string_raises(self):
        with pytest.raises(ValueError, match="account"):
            parse_installation_payload({"action": "created", "installation": {"id": 1, "account": "acme"}})


# ── fetch_job_logs ────────────────────────────────────────────────────────────

class TestFetchJobLogs:
    async def test_follows_redirect_and_returns_text(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if request.url.path.endswith("/logs"):
                assert request.headers["Authorization"] == "Bearer t0ken"
                return httpx.Response(302, headers={"Location": "https://blob.example.com/log.txt"})
            return httpx.Response(200, text="2025-01-01T12:00:00Z ##[group]Run make\n")

        text = await fetch_job_logs("acme/api", "101", "t0ken", transport=httpx.MockTransport(handler))

        assert "Run make" in text
        assert seen[0] == "https://api.github.com/repos/acme/api/actions/jobs/101/logs"
        assert seen[1] == "https://blob.example.com/log.txt"

    async def test_404_is_not_retryable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        with pytest.raises(UpstreamError) as exc_info:
            await fetch_job_logs("acme/api", "101", "t0ken", transport=transport)
        assert exc_info.value.retryable is False

    async def test_server_error_is_retryable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(502))
        with pytest.raises(UpstreamError) as exc_info:
            await fetch_job_logs("acme/api", "101", "t0ken", transport=transport)
        assert exc_info.value.retryable is True

    async def test_network_error_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await fetch_job_logs("acme/api", "101", "t0ken", transport=httpx.MockTransport(handler))
        assert exc_info.value.retryable is True

    async def test_missing_token_is_not_retryable(self):
        with pytest.raises(UpstreamError) as exc_info:
            await fetch_job_logs("acme/api", "101", "")
        assert exc_info.value.retryable is False

    async def test_bad_repository_is_not_retryable(self):
        with pytest.raises(UpstreamError) as exc_info:
            await fetch_job_logs("no-slash", "101", "t0ken")
        assert exc_info.value.retryable is False
