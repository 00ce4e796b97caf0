"""FastAPI dependency injection — provides the orchestrator and admin auth.

The orchestrator is built once in the application lifespan and stashed on
``app.state``; routes receive it through :func:`get_orchestrator`.
"""

import hmac

from fastapi import Header, HTTPException, Request

from rdv_assistant.orchestrator import DialogOrchestrator


def get_orchestrator(request: Request) -> DialogOrchestrator:
    """Return the orchestrator from ``app.state``."""
    return request.app.state.orchestrator


async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header against ``ADMIN_API_KEY``.

    Raises 403 when admin endpoints are disabled (no key configured) or the
    key does not match, 401 when the header is missing.
    """
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    # Constant-time comparison to prevent timing side-channels.
    if not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key
