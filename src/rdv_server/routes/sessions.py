"""Session endpoints — inspect, reset, consent, one-time code, slot confirmation."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rdv_assistant.models.response import SlotPayload, StructuredResponse
from rdv_assistant.models.session import SessionInfo
from rdv_assistant.orchestrator import DialogOrchestrator

from rdv_server.dependencies import get_orchestrator

router = APIRouter(tags=["sessions"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class ConsentRequest(BaseModel):
    """Body for POST /sessions/{session_id}/consent."""
    data_processing: bool
    marketing_emails: bool = False
    transactional_emails: bool = False


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> SessionInfo:
    """Progress flags of a live session.  404 if unknown or evicted."""
    info = orchestrator.get_session_info(session_id)
    if info is None:
        raise ValueError(f"Session not found: session_id={session_id}")
    return info


@router.delete("/sessions/{session_id}", status_code=204)
async def reset_session(
    session_id: str,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> None:
    """Forget a session.  Idempotent: 204 whether or not it existed."""
    orchestrator.reset_session(session_id)


@router.post("/sessions/{session_id}/consent")
async def record_consent(
    session_id: str,
    body: ConsentRequest,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> StructuredResponse:
    """Record consent flags (from the sign-up checkbox) and continue."""
    return await orchestrator.record_consent(
        session_id,
        data_processing=body.data_processing,
        marketing=body.marketing_emails,
        transactional=body.transactional_emails,
    )


@router.post("/sessions/{session_id}/otp/resend")
async def resend_code(
    session_id: str,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> StructuredResponse:
    return await orchestrator.resend_code(session_id)


@router.post("/sessions/{session_id}/appointment")
async def confirm_appointment(
    session_id: str,
    body: SlotPayload,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> StructuredResponse:
    """Record the slot the patient picked; answers with ``confirmation``."""
    return await orchestrator.confirm_appointment(session_id, body)
