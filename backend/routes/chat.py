"""Chat endpoint: one orchestration turn per request."""

import uuid

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from .models import ChatBody

router = APIRouter()


@router.post("/chat")
async def chat(body: ChatBody, request: Request):
    """Run one turn. With stream=true the answer is streamed as plain text."""
    services = request.app.state.services
    conversation_id = body.conversation_id or uuid.uuid4().hex

    if body.stream:
        try:
            chunks = services.orchestrator.stream_turn(body.user_id, conversation_id, body.message)
        except KeyError:
            raise HTTPException(404, "Conversation not found")
        return StreamingResponse(
            chunks,
            media_type="text/plain; charset=utf-8",
            headers={"X-Conversation-Id": conversation_id},
        )

    try:
        outcome = await services.orchestrator.run_turn(body.user_id, conversation_id, body.message)
    except KeyError:
        raise HTTPException(404, "Conversation not found")
    return {"conversation_id": conversation_id, **outcome.model_dump(mode="json")}
