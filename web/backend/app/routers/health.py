"""Service health.

Prefix: ``/api``
"""

from __future__ import annotations

import os

from fastapi import APIRouter

from forkwatch import __version__
from forkwatch.config import load_config
from forkwatch.errors import ConfigError
from web.backend.app.models.api import HealthResponse

router = APIRouter(prefix="/api", tags=["meta"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Report liveness and whether the service has what it needs to verify deliveries."""
    try:
        config = load_config(validate=False)
    except ConfigError:
        return HealthResponse(status="misconfigured", version=__version__)
    return HealthResponse(
        status="healthy",
        version=__version__,
        repository=config.fork,
        webhook_secret_configured=bool(os.environ.get(config.webhook_secret_env)),
    )
