"""Admin endpoints — live session count and manual sweep.

Protected by the ``ADMIN_API_KEY`` setting.  Every request must include an
``X-Admin-Key`` header whose value matches the configured key.  Returns 401
if missing, 403 if wrong or if admin endpoints are disabled.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rdv_assistant.orchestrator import DialogOrchestrator

from rdv_server.dependencies import get_orchestrator, require_admin_key

router = APIRouter(prefix="/admin", tags=["admin"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class SessionCount(BaseModel):
    active_sessions: int


class SweepResult(BaseModel):
    """Response body for POST /admin/sessions/sweep."""
    removed: int
    active_sessions: int


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions/count")
async def session_count(
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
    _admin: str = Depends(require_admin_key),
) -> SessionCount:
    return SessionCount(active_sessions=orchestrator.active_sessions())


@router.post("/sessions/sweep")
async def sweep_sessions(
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
    _admin: str = Depends(require_admin_key),
) -> SweepResult:
    """Evict idle sessions now instead of waiting for the background sweeper."""
    removed = orchestrator.sweep_sessions()
    return SweepResult(removed=removed, active_sessions=orchestrator.active_sessions())
