"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that builds the session store, the collaborator
    clients and the orchestrator once, and runs the TTL sweeper
  - CORS middleware
  - Global exception handlers (ValueError → 404/400, KeyError → 404)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``rdv-server`` console-script entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rdv_assistant.clients import HttpAuthService, HttpEmailService
from rdv_assistant.orchestrator import DialogOrchestrator
from rdv_assistant.session_store import SessionStore

from rdv_server.config import ServerSettings, load_settings
from rdv_server.errors import (
    generic_error_handler,
    key_error_handler,
    value_error_handler,
)
from rdv_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Background sweeper
# ------------------------------------------------------------------

async def sweep_periodically(orchestrator: DialogOrchestrator, interval: float) -> None:
    """Evict idle sessions every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = orchestrator.sweep_sessions()
        except Exception:
            logger.exception("Session sweep failed")
            continue
        if removed:
            logger.info("Sweeper evicted %d session(s), %d active", removed, orchestrator.active_sessions())


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Build the ``SessionStore`` and the HTTP collaborator clients
      2. Build the ``DialogOrchestrator`` (unless one was injected)
      3. Start the TTL sweeper task

    Shutdown:
      1. Cancel the sweeper
      2. Close the collaborator HTTP clients
    """
    settings: ServerSettings = app.state.settings
    clients: list[HttpAuthService | HttpEmailService] = []

    # --- Build orchestrator (tests inject their own) ---
    orchestrator: DialogOrchestrator | None = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        store = SessionStore(ttl=timedelta(minutes=settings.session_ttl_minutes))
        auth = HttpAuthService(
            settings.auth_service_url,
            api_key=settings.collaborator_api_key,
            timeout=settings.collaborator_timeout,
        )
        email = HttpEmailService(
            settings.email_service_url,
            api_key=settings.collaborator_api_key,
            timeout=settings.collaborator_timeout,
        )
        clients = [auth, email]
        orchestrator = DialogOrchestrator(
            store,
            auth,
            email,
            required_fields=settings.required_fields,
            timeout=settings.collaborator_timeout,
        )
        app.state.orchestrator = orchestrator
        logger.info("Orchestrator ready (required fields: %s)", ", ".join(orchestrator.required_fields))

    # --- Sweeper ---
    sweeper: asyncio.Task | None = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            sweep_periodically(orchestrator, settings.sweep_interval_seconds)
        )

    yield

    # --- Shutdown ---
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    for client in clients:
        await client.aclose()
    logger.info("Collaborator clients closed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(
    settings: ServerSettings | None = None,
    orchestrator: DialogOrchestrator | None = None,
) -> FastAPI:
    """Build and return the configured FastAPI application.

    Args:
        settings: server settings; read from the environment if omitted
        orchestrator: pre-built orchestrator (tests pass one wired to fake
            collaborators); built in the lifespan if omitted
    """
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="NOVA RDV Assistant API",
        description="Conversational appointment-booking assistant for the NOVA clinic",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(KeyError, key_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness probe — reports the live session count."""
        orch: DialogOrchestrator | None = getattr(app.state, "orchestrator", None)
        if orch is None:
            return {"status": "starting"}
        return {"status": "ok", "active_sessions": orch.active_sessions()}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn rdv_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``rdv-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "rdv_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
