"""Engagement patterns: extraction from the corpus and success-rate learning.

Learning only touches success rates: a pattern's success rate moves toward 100
by an exponential-moving-average step whenever an output built on it is
loved and performs.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Literal, get_args

from voiceforge.errors import NoCorpusError
from voiceforge.llm import LLM, complete_text, parse_json_object
from voiceforge.models import Pattern, PatternType
from voiceforge.prompts import build_pattern_prompt
from voiceforge.storage import CorpusSource, PatternStore

logger = logging.getLogger(__name__)

MAX_TEXTS = 10
LEARNING_RATE = 0.1
ENGAGEMENT_THRESHOLD = 5.0

Feedback = Literal["loved", "liked", "neutral", "disliked"]

_PATTERN_TYPES = set(get_args(PatternType))


def pattern_id(user_id: str, type: str, description: str) -> str:
    """Stable id so re-analysis updates a pattern instead of duplicating it."""
    digest = hashlib.sha1(f"{user_id}|{type}|{description.strip().lower()}".encode()).hexdigest()
    return f"pat-{digest[:12]}"


class PatternAnalyzer:
    def __init__(self, corpus: CorpusSource, store: PatternStore, llm: LLM) -> None:
        self._corpus = corpus
        self._store = store
        self._llm = llm

    async def analyze(self, user_id: str) -> list[Pattern]:
        """Extract typed patterns from the best texts and upsert them.

        Existing patterns keep their success rate and usage counter.
        """
        texts = self._corpus.list_exemplar_texts(user_id, order_by="engagement", limit=MAX_TEXTS)
        if not texts:
            texts = self._corpus.list_exemplar_texts(user_id, order_by="recency", limit=MAX_TEXTS)
        if not texts:
            raise NoCorpusError(user_id)

        output = await complete_text(
            self._llm, "pattern_extraction", build_pattern_prompt(texts),
            temperature=0.2, structured=True,
        )
        data = parse_json_object(output) or {}

        patterns: list[Pattern] = []
        for item in data.get("patterns") or []:
            if not isinstance(item, dict):
                continue
            type_ = item.get("type")
            description = str(item.get("description") or "").strip()
            if type_ not in _PATTERN_TYPES or not description:
                logger.debug("skipping malformed pattern %r", item)
                continue
            pid = pattern_id(user_id, type_, description)
            existing = self._store.get_pattern(pid)
            pattern = Pattern(
                id=pid,
                user_id=user_id,
                type=type_,
                description=description,
                examples=[e for e in item.get("examples") or [] if isinstance(e, str)],
                success_rate=existing.success_rate if existing else 0.0,
                times_used=existing.times_used if existing else 0,
                last_used_at=existing.last_used_at if existing else None,
            )
            self._store.upsert_pattern(pattern)
            patterns.append(pattern)

        logger.info("pattern analysis user=%s texts=%d patterns=%d", user_id, len(texts), len(patterns))
        return patterns


class PatternLearner:
    def __init__(self, store: PatternStore, alpha: float = LEARNING_RATE) -> None:
        self._store = store
        self._alpha = alpha

    def record_feedback(
        self, pattern_ids: list[str], engagement: float, feedback: Feedback,
    ) -> list[Pattern]:
        """Nudge success rates for loved, well-performing output. Returns updated patterns."""
        if feedback != "loved" or engagement <= ENGAGEMENT_THRESHOLD:
            return []

        updated: list[Pattern] = []
        for pid in pattern_ids:
            pattern = self._store.get_pattern(pid)
            if pattern is None:
                logger.warning("feedback for unknown pattern %s", pid)
                continue
            delta = self._alpha * (100.0 - pattern.success_rate)
            result = self._store.bump_success_rate(pid, delta)
            if result is not None:
                updated.append(result)
        return updated
