"""GitHub webhook receiver.

Prefix: ``/api/webhooks``

Deliveries are verified against ``X-Hub-Signature-256`` (HMAC-SHA256 over the
raw body). ``pull_request`` events for the sync pull request start the
security scan in the background; every other event is acknowledged and
ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from forkwatch.config import ForkwatchConfig, load_config
from forkwatch.errors import ForkwatchError, RunSuperseded
from forkwatch.models.repository import PullRequestInfo
from forkwatch.scan.gate import ScanTriggerGate
from web.backend.app.models.api import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SCAN_ACTIONS = {"opened", "reopened", "synchronize", "labeled"}


# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------


def compute_signature(payload_bytes: bytes, secret: str) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub sends for a payload."""
    mac = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256)
    return f"sha256={mac.hexdigest()}"


def verify_signature(payload_bytes: bytes, secret: str, header: Optional[str]) -> bool:
    if not header:
        return False
    return hmac.compare_digest(compute_signature(payload_bytes, secret), header)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_config() -> ForkwatchConfig:
    try:
        return load_config()
    except ForkwatchError as e:
        logger.error("forkwatch is not configured: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e


def run_scan(config: ForkwatchConfig, pr_number: int) -> None:
    """Background task: run the scan for one pull request and record the run."""
    from forkwatch.github.identity import ambient_identity
    from forkwatch.history import RunHistory
    from forkwatch.llm.client import LLMClient
    from forkwatch.scan.gate import ScanRunner

    fork = config.fork_repo
    history = RunHistory(config.state_path)
    try:
        with ambient_identity(config).client(config.api_url) as client:
            result = ScanRunner(
                client,
                fork,
                config.state_path,
                fail_on=config.scan.fail_on_severity,
                llm=LLMClient(model=config.scan.model) if config.scan.enrich else None,
            ).run(pr_number)
    except RunSuperseded as e:
        logger.info("%s", e)
        history.record("scan", fork.full_name, "superseded", details={"pr": pr_number})
        return
    except ForkwatchError as e:
        logger.error("Scan of #%s failed: %s", pr_number, e)
        history.record(
            "scan", fork.full_name, "error", success=False, details={"pr": pr_number, "error": str(e)}
        )
        return

    history.record(
        "scan",
        fork.full_name,
        "blocking" if result.assessment.blocking else result.assessment.level,
        success=not result.assessment.blocking,
        details={"pr": pr_number, "head_sha": result.pr.head_sha, "counts": result.assessment.counts},
    )


def get_scan_launcher() -> Callable[[ForkwatchConfig, int], None]:
    return run_scan


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@router.post("/github", response_model=WebhookAck)
async def receive_github_event(
    request: Request,
    background: BackgroundTasks,
    x_github_event: str = Header("", alias="X-GitHub-Event"),
    x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256"),
    config: ForkwatchConfig = Depends(get_config),
    launch_scan: Callable[[ForkwatchConfig, int], None] = Depends(get_scan_launcher),
):
    """Verify a GitHub delivery and start the scan for sync pull request events."""
    secret = os.environ.get(config.webhook_secret_env, "")
    if not secret:
        raise HTTPException(
            status_code=503,
            detail=f"Webhook secret not configured: set {config.webhook_secret_env}",
        )

    body = await request.body()
    if not verify_signature(body, secret, x_hub_signature_256):
        logger.warning("Rejected %s delivery with a bad signature", x_github_event or "unknown")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Payload is not valid JSON") from e

    action = payload.get("action", "")
    if x_github_event != "pull_request":
        return WebhookAck(status="ignored", event=x_github_event, action=action, reason="not a pull_request event")
    if action not in SCAN_ACTIONS:
        return WebhookAck(status="ignored", event=x_github_event, action=action, reason=f"action {action!r} does not start a scan")

    pr = PullRequestInfo.from_api(payload.get("pull_request") or {"number": 0})
    repository = (payload.get("repository") or {}).get("full_name", "")
    fork = config.fork_repo
    if repository != fork.full_name or pr.head_ref != config.sync.tracking_branch:
        return WebhookAck(
            status="ignored", event=x_github_event, action=action, pull_request=pr.number, reason="not a sync pull request"
        )
    if action == "labeled" and (payload.get("label") or {}).get("name") != config.scan.trigger_label:
        return WebhookAck(
            status="ignored",
            event=x_github_event,
            action=action,
            pull_request=pr.number,
            reason=f"label is not {config.scan.trigger_label!r}",
        )

    decision = ScanTriggerGate(
        inline_fallback=config.scan.inline_fallback,
        trigger_label=config.scan.trigger_label,
    ).evaluate(pr)
    background.add_task(launch_scan, config, pr.number)
    logger.info("Queued scan of #%s after %s/%s", pr.number, x_github_event, action)

    return WebhookAck(
        status="accepted",
        event=x_github_event,
        action=action,
        pull_request=pr.number,
        origin=decision.origin.value,
        mode=decision.mode.value,
        reason=decision.reason,
    )
