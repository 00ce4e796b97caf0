"""Message endpoint — one user message in, one structured action out.

The session id is opaque and chosen by the caller; the first message for an
unknown id creates the session.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rdv_assistant.models.response import StructuredResponse
from rdv_assistant.orchestrator import DialogOrchestrator

from rdv_server.dependencies import get_orchestrator

router = APIRouter(tags=["messages"])


class MessageRequest(BaseModel):
    """Body for POST /sessions/{session_id}/messages."""
    text: str = Field(max_length=2000)


@router.post("/sessions/{session_id}/messages")
async def post_message(
    session_id: str,
    body: MessageRequest,
    orchestrator: DialogOrchestrator = Depends(get_orchestrator),
) -> StructuredResponse:
    """Process one user message.

    Always 200: conversational errors are reported inside the response
    (``need_info`` / ``route_to_human``), never as HTTP errors.
    """
    return await orchestrator.process_message(session_id, body.text)
