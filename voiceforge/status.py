"""Per-user onboarding and data-completeness diagnostics."""

from __future__ import annotations

from pydantic import BaseModel

from voiceforge.fingerprint import FingerprintCache
from voiceforge.storage import Storage


class UserStatus(BaseModel):
    user_id: str
    has_profile: bool
    has_corpus: bool
    corpus_size: int
    has_engagement_data: bool
    has_fingerprint: bool
    fingerprint_age_hours: float | None = None
    fingerprint_stale: bool = False
    has_patterns: bool
    pattern_count: int
    next_step: str


def _next_step(status: dict) -> str:
    if not status["has_corpus"]:
        return "Import some of your posts so there is a voice to learn from."
    if not status["has_fingerprint"] or status["fingerprint_stale"]:
        return "Refresh the voice fingerprint."
    if not status["has_patterns"]:
        return "Reanalyze the corpus to extract engagement patterns."
    if not status["has_profile"]:
        return "Add a profile so drafts can reference your background."
    return "Ready to generate."


def compute_user_status(
    storage: Storage,
    fingerprints: FingerprintCache,
    user_id: str,
) -> UserStatus:
    """Age and staleness are measured with the fingerprint cache's clock."""
    corpus = storage.list_exemplar_texts(user_id, order_by="recency")
    patterns = storage.list_patterns(user_id)
    cached = fingerprints.peek(user_id)

    age: float | None = None
    if cached is not None:
        age = round(fingerprints.age(cached[1]).total_seconds() / 3600, 2)

    fields = {
        "user_id": user_id,
        "has_profile": storage.get_profile(user_id) is not None,
        "has_corpus": bool(corpus),
        "corpus_size": len(corpus),
        "has_engagement_data": any(t.engagement is not None for t in corpus),
        "has_fingerprint": cached is not None,
        "fingerprint_age_hours": age,
        "fingerprint_stale": cached is not None and not fingerprints.is_fresh(cached[1]),
        "has_patterns": bool(patterns),
        "pattern_count": len(patterns),
    }
    return UserStatus(**fields, next_step=_next_step(fields))
