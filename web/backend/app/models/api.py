"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Webhook models
# ---------------------------------------------------------------------------


class WebhookAck(BaseModel):
    """Acknowledgement returned for every delivery that passed verification."""

    status: str  # accepted | ignored
    event: str
    action: str = ""
    pull_request: Optional[int] = None
    origin: str = ""
    mode: str = ""
    reason: str = ""


# ---------------------------------------------------------------------------
# Meta models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = ""
    repository: str = ""
    webhook_secret_configured: bool = False
    components: list[str] = Field(default_factory=lambda: ["sync", "tags", "scan"])
