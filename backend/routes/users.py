"""Per-user endpoints: corpus ingestion, profile, fingerprint, status, generation."""

import uuid

from fastapi import APIRouter, HTTPException, Request

from voiceforge.models import ExemplarText, UserProfile, utcnow
from voiceforge.status import compute_user_status
from voiceforge.text import first_line

from .models import AddExemplars, GenerateBody, UpdateProfile

router = APIRouter()


def _services(request: Request):
    return request.app.state.services


@router.put("/users/{user_id}/profile")
async def put_profile(user_id: str, body: UpdateProfile, request: Request):
    """Create or replace the user's profile."""
    profile = UserProfile(user_id=user_id, **body.model_dump())
    _services(request).storage.save_profile(profile)
    return profile


@router.post("/users/{user_id}/exemplars")
async def add_exemplars(user_id: str, body: AddExemplars, request: Request):
    """Ingest exemplar texts (upsert by id). Invalidates cached fingerprint and knowledge map."""
    texts = [
        ExemplarText(
            id=t.id or uuid.uuid4().hex,
            user_id=user_id,
            text=t.text,
            hook=first_line(t.text),
            engagement=t.engagement,
            posted_at=t.posted_at or utcnow(),
        )
        for t in body.texts
    ]
    size = _services(request).add_exemplars(user_id, texts)
    return {"added": len(texts), "corpus_size": size}


@router.get("/users/{user_id}/status")
async def get_status(user_id: str, request: Request):
    """Data-completeness flags and the suggested next step."""
    services = _services(request)
    return compute_user_status(services.storage, services.fingerprints, user_id)


@router.get("/users/{user_id}/fingerprint")
async def get_fingerprint(user_id: str, request: Request):
    """Cached fingerprint, extracted on demand when missing or stale."""
    cache = _services(request).fingerprints
    fingerprint = await cache.get(user_id)
    cached = cache.peek(user_id)
    return {
        "fingerprint": fingerprint,
        "last_updated": cached[1] if cached is not None else None,
    }


@router.delete("/users/{user_id}/fingerprint")
async def delete_fingerprint(user_id: str, request: Request):
    """Invalidate the cached fingerprint."""
    _services(request).fingerprints.invalidate(user_id)
    return {"ok": True}


@router.post("/users/{user_id}/generate")
async def generate(user_id: str, body: GenerateBody, request: Request):
    """Generate one validated post. Domain errors map to 404/422, upstream to 502-504."""
    return await _services(request).pipeline.generate(user_id, body.topic, body.angle)


@router.get("/users/{user_id}/agent-stats")
async def agent_stats(user_id: str, request: Request, days: int | None = None):
    """Request count, average response time, success rate and most used tools."""
    if days is not None and days < 1:
        raise HTTPException(422, "days must be positive")
    return _services(request).monitor.agent_stats(user_id, days=days)
