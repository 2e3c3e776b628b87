"""Drive a local server through one job: webhooks, telemetry, analysis.

Sends a signed workflow_job "in_progress" webhook, a short series of
telemetry samples, a signed "completed" webhook, then prints the analysis.
Set GITHUB_WEBHOOK_SECRET to the same value the server uses.
"""

import hashlib
import hmac
import json
import os
import sys
import urllib.error
import urllib.request
from datetime import datetime, timedelta, timezone


BASE_URL = "http://127.0.0.1:8000"
JOB_ID = 4200000001
RUN_ID = 4200000000
REPOSITORY = "runner-pulse-demo/api"
CPU_SERIES = [12.0, 18.5, 35.0, 61.0, 88.0, 93.5, 76.0, 40.0]


def _request(method: str, path: str, payload: dict | None = None, headers: dict | None = None) -> dict:
    url = f"{BASE_URL}{path}"
    data = None
    all_headers = {"Content-Type": "application/json", **(headers or {})}

    if payload is not None:
        data = json.dumps(payload).encode("utf-8")

    req = urllib.request.Request(url=url, method=method, data=data, headers=all_headers)
    with urllib.request.urlopen(req, timeout=10) as resp:
        body = resp.read().decode("utf-8")
        return json.loads(body) if body else {}


def _webhook(payload: dict) -> dict:
    body = json.dumps(payload).encode("utf-8")
    secret = os.environ.get("GITHUB_WEBHOOK_SECRET", "demo-secret")
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    req = urllib.request.Request(
        url=f"{BASE_URL}/webhooks/github",
        method="POST",
        data=body,
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": "workflow_job",
            "X-Hub-Signature-256": f"sha256={digest}",
        },
    )
    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def _workflow_job(action: str, started: datetime, **extra) -> dict:
    return {
        "action": action,
        "workflow_job": {
            "id": JOB_ID,
            "run_id": RUN_ID,
            "name": "build",
            "head_branch": "main",
            "head_sha": "f83a356d1c2e4b5a",
            "workflow_name": "CI",
            "runner_name": "demo-runner-1",
            "labels": ["self-hosted", "ubuntu-22.04"],
            "started_at": started.isoformat(),
            **extra,
        },
        "repository": {"full_name": REPOSITORY},
    }


def _sample(at: datetime, cpu: float, index: int) -> dict:
    return {
        "timestamp": at.isoformat(),
        "context": {"job_id": JOB_ID, "run_id": RUN_ID, "repository": REPOSITORY},
        "system": {
            "info": {"hostname": "demo-runner-1"},
            "cpu": {"cores": 4, "current_usage": {"usage_percent": cpu}},
            "memory": {"total_bytes": 8_000_000_000, "used_bytes": 4_000_000_000, "usage_percent": 50.0},
            "disk": [{"filesystem": "/dev/root", "use_percentage": 42.0, "mounted_on": "/"}],
            "network": [{"interface": "eth0", "stats": {"rx_bytes": 1_000_000 * index, "tx_bytes": 250_000 * index}}],
        },
    }


def main() -> int:
    started = datetime.now(timezone.utc).replace(microsecond=0)

    try:
        print("Posting workflow_job in_progress ...")
        print(f"  {_webhook(_workflow_job('in_progress', started))}")
    except urllib.error.URLError as exc:
        print(f"Failed to reach API at {BASE_URL}: {exc}", file=sys.stderr)
        print("Start it first with: uv run uvicorn main:app", file=sys.stderr)
        return 1

    print(f"Posting {len(CPU_SERIES)} telemetry samples ...")
    for index, cpu in enumerate(CPU_SERIES):
        ack = _request("POST", "/metrics", _sample(started + timedelta(seconds=15 * index), cpu, index))
        print(f"  t+{15 * index:>3}s cpu={cpu:>5.1f}%  rx={ack['network_rx_rate']:.0f} B/s")

    completed_at = started + timedelta(seconds=15 * len(CPU_SERIES))
    print("Posting workflow_job completed ...")
    print(f"  {_webhook(_workflow_job('completed', started, completed_at=completed_at.isoformat(), conclusion='success'))}")

    analysis = _request("POST", f"/jobs/{JOB_ID}/analyze")
    print("\nAnalysis:")
    print(json.dumps(analysis, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
