"""Style fingerprint extraction and caching.

Extraction flow:
  1. Fetch up to 10 highest-engagement texts, or the 10 most recent when
     none carries an engagement signal. No texts at all -> NoCorpusError,
     before any model call.
  2. One structured model call returns the verbatim fields (hooks,
     signature phrases, forbidden phrases, narrative shape, tone flags).
  3. Numeric and boolean style metrics are computed here from the corpus;
     the model's opinion of them is ignored.
  4. An incomplete or unparseable result is logged and replaced by the
     built-in emergency fingerprint, which is never persisted.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from voiceforge import text as textutil
from voiceforge.cache import DEFAULT_TTL, ArtifactCache
from voiceforge.errors import NoCorpusError
from voiceforge.llm import LLM, complete_text, parse_json_object
from voiceforge.models import ExemplarText, StyleFingerprint, utcnow
from voiceforge.prompts import build_extraction_prompt
from voiceforge.storage import ArtifactStore, CorpusSource

logger = logging.getLogger(__name__)

MAX_EXEMPLARS = 10
EXTRACTION_TEMPERATURE = 0.2

_LIST_FIELDS = (
    "hook_patterns",
    "first_sentence_examples",
    "signature_phrases",
    "forbidden_phrases",
    "unique_words",
    "avoided_words",
    "narrative_steps",
)
_TEXT_FIELDS = ("closing_style", "hashtag_style")
_TONE_FIELDS = ("self_deprecating", "conversational", "technical", "vulnerable")


EMERGENCY_FINGERPRINT = StyleFingerprint(
    hook_patterns=[
        "I got annoyed enough to build X",
        "X taught me more than Y",
        "The X I built failed spectacularly",
        "I spent X days building Y",
    ],
    first_sentence_examples=[
        "I got annoyed enough this weekend to build something I should've built months ago.",
    ],
    signature_phrases=[
        "honestly?",
        "everything broke",
        "failed spectacularly",
        "wasn't cutting it",
        "actually works",
    ],
    forbidden_phrases=[
        "in today's world",
        "have you ever",
        "the power of",
        "game-changer",
        "seamless integration",
        "lessons learned:",
        "key takeaways",
    ],
    unique_words=["annoyed", "broke", "died", "failed", "crashed"],
    avoided_words=["synergy", "leverage", "seamless", "innovative", "delve"],
    avg_sentence_length=12.0,
    avg_paragraph_count=4.0,
    uses_contractions=True,
    uses_fragments=True,
    uses_emoji=False,
    uses_hashtags=False,
    uses_bullets=False,
    uses_questions=True,
    bullet_glyph="-",
    self_deprecating=True,
    conversational=True,
    technical=True,
    vulnerable=True,
    narrative_steps=[
        "Open with a specific failure or emotion",
        "Say what you built and why",
        "Show what broke with honest details",
        "Explain the fix with specific constraints",
        "Ask about the reader's experience",
    ],
    closing_style="a practical question about the reader's own experience",
    source="emergency",
)


def emergency_fingerprint() -> StyleFingerprint:
    return EMERGENCY_FINGERPRINT.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Local metrics
# ---------------------------------------------------------------------------

def compute_style_metrics(texts: list[str]) -> dict[str, Any]:
    """Numeric and boolean style metrics measured directly from the corpus."""
    if not texts:
        return {}
    sentences = sum(len(textutil.split_sentences(t)) for t in texts)
    words = sum(textutil.count_words(t) for t in texts)
    markers = Counter(m for t in texts for m in textutil.bullet_markers(t))
    with_contractions = sum(1 for t in texts if textutil.has_contractions(t))
    return {
        "avg_sentence_length": round(words / sentences, 2) if sentences else 0.0,
        "avg_paragraph_count": round(textutil.average_paragraph_count(texts), 2),
        "uses_contractions": with_contractions * 2 >= len(texts),
        "uses_fragments": any(textutil.has_fragments(t) for t in texts),
        "uses_emoji": any(textutil.has_emoji(t) for t in texts),
        "uses_hashtags": any(textutil.has_hashtags(t) for t in texts),
        "uses_bullets": bool(markers),
        "uses_questions": any("?" in t for t in texts),
        "bullet_glyph": markers.most_common(1)[0][0] if markers else "-",
    }


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class FingerprintExtractor:
    def __init__(self, corpus: CorpusSource, llm: LLM) -> None:
        self._corpus = corpus
        self._llm = llm

    def select_exemplars(self, user_id: str) -> list[ExemplarText]:
        texts = self._corpus.list_exemplar_texts(user_id, order_by="engagement", limit=MAX_EXEMPLARS)
        if not texts:
            texts = self._corpus.list_exemplar_texts(user_id, order_by="recency", limit=MAX_EXEMPLARS)
        return texts

    async def extract(self, user_id: str) -> StyleFingerprint:
        exemplars = self.select_exemplars(user_id)
        if not exemplars:
            raise NoCorpusError(user_id)

        logger.info("extracting fingerprint user=%s exemplars=%d", user_id, len(exemplars))
        output = await complete_text(
            self._llm,
            "fingerprint_extraction",
            build_extraction_prompt(exemplars),
            temperature=EXTRACTION_TEMPERATURE,
            structured=True,
        )
        data = parse_json_object(output)
        if data is None:
            logger.warning("fingerprint extraction returned no JSON object user=%s, using emergency profile", user_id)
            return emergency_fingerprint()

        texts = [e.text for e in exemplars]
        fields: dict[str, Any] = {name: _str_list(data.get(name)) for name in _LIST_FIELDS}
        fields.update({name: str(data.get(name) or "") for name in _TEXT_FIELDS})
        fields.update({name: bool(data.get(name, False)) for name in _TONE_FIELDS})
        if not fields["first_sentence_examples"]:
            fields["first_sentence_examples"] = [textutil.first_line(t) for t in texts][:5]
        fields.update(compute_style_metrics(texts))

        try:
            fingerprint = StyleFingerprint.model_validate({
                **fields, "source": "extracted", "exemplar_count": len(exemplars),
            })
        except ValidationError as e:
            logger.warning("fingerprint extraction produced invalid fields user=%s: %s", user_id, e)
            return emergency_fingerprint()

        missing = fingerprint.missing_fields()
        if missing:
            logger.warning(
                "fingerprint incomplete user=%s missing=%s, using emergency profile",
                user_id, ",".join(missing),
            )
            return emergency_fingerprint()
        return fingerprint


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class FingerprintCache(ArtifactCache[StyleFingerprint]):
    """Per-user fingerprint cache. Only extracted fingerprints are persisted."""

    NAME = "fingerprint"

    def __init__(
        self,
        store: ArtifactStore,
        extractor: FingerprintExtractor,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(
            store,
            self.NAME,
            StyleFingerprint,
            extractor.extract,
            ttl=ttl,
            clock=clock,
            should_persist=lambda fp: fp.source == "extracted",
        )
