"""FastAPI application for the forkwatch webhook service.

Provides REST API endpoints wrapping the forkwatch Python package for:
- GitHub webhook deliveries that start the security scan on sync pull requests
- Health checks
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the forkwatch package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI

from forkwatch import __version__
from web.backend.app.routers import health, webhooks

app = FastAPI(
    title="forkwatch API",
    description=(
        "Webhook service for forkwatch. Verifies GitHub deliveries and runs "
        "the security scan on upstream sync pull requests."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(webhooks.router)
app.include_router(health.router)


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "forkwatch API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }
