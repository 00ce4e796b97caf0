"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

from rdv_assistant.constants import (
    COLLABORATOR_TIMEOUT_SECONDS,
    DEFAULT_REQUIRED_FIELDS,
    SESSION_TTL_MINUTES,
)


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # Collaborators
    auth_service_url: str = "http://localhost:8081"
    email_service_url: str = "http://localhost:8082"
    collaborator_api_key: str | None = None
    collaborator_timeout: float = COLLABORATOR_TIMEOUT_SECONDS

    # Sessions idle longer than this are evicted; the sweeper wakes up
    # every ``sweep_interval_seconds`` (0 disables the background task).
    session_ttl_minutes: int = SESSION_TTL_MINUTES
    sweep_interval_seconds: int = 60

    # Identity fields required before slot search
    required_fields: tuple[str, ...] = DEFAULT_REQUIRED_FIELDS

    # Admin API key, shared secret for admin endpoints (None = disabled)
    admin_api_key: str | None = None


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and collaborator environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    raw_required = os.getenv("REQUIRED_FIELDS", ",".join(DEFAULT_REQUIRED_FIELDS))
    required = tuple(f.strip() for f in raw_required.split(",") if f.strip())

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        auth_service_url=os.getenv("AUTH_SERVICE_URL", "http://localhost:8081"),
        email_service_url=os.getenv("EMAIL_SERVICE_URL", "http://localhost:8082"),
        collaborator_api_key=os.getenv("COLLABORATOR_API_KEY") or None,
        collaborator_timeout=COLLABORATOR_TIMEOUT_SECONDS,
        session_ttl_minutes=SESSION_TTL_MINUTES,
        sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
        required_fields=required,
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
    )
