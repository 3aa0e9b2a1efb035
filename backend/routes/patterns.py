"""Pattern feedback and conversation context endpoints."""

from fastapi import APIRouter, HTTPException, Request

from .models import FeedbackBody

router = APIRouter()


@router.post("/patterns/{pattern_id}/feedback")
async def pattern_feedback(pattern_id: str, body: FeedbackBody, request: Request):
    """Record how a post built on this pattern performed."""
    services = request.app.state.services
    if services.storage.get_pattern(pattern_id) is None:
        raise HTTPException(404, "Pattern not found")
    updated = services.learner.record_feedback([pattern_id], body.engagement, body.feedback)
    pattern = updated[0] if updated else services.storage.get_pattern(pattern_id)
    return {"updated": bool(updated), "pattern": pattern}


@router.get("/conversations/{conversation_id}/context")
async def conversation_context(conversation_id: str, request: Request):
    """Token usage and health for one conversation."""
    metrics = request.app.state.services.context.metrics(conversation_id)
    if metrics is None:
        raise HTTPException(404, "Conversation not found")
    return metrics
