"""Email-summary endpoint, called by the host after a booking."""

from fastapi import APIRouter, Body, Depends

from rdv_assistant.models.collaborators import AppointmentSummary
from rdv_assistant.models.response import StructuredResponse
from rdv_assistant.orchestrator import DialogOrchestrator

from rdv_server.dependencies import get_orchestrator

router = APIRouter(tags=["email"])


@router.post("/sessions/{session_id}/email-summary")
async def send_email_summary(
    session_id: str,
    body: AppointmentSummary | None = Body(None),
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> StructuredResponse:
    """Send the booking summary to the patient's confirmed email.

    Without a body the summary is built from the slot confirmed through
    ``POST /sessions/{session_id}/appointment``.  Delivery failures come
    back as ``route_to_human`` with the clinic's contact details.
    """
    return await orchestrator.send_email_summary(session_id, body)
