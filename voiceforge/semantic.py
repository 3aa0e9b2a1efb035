"""Semantic knowledge map: what the user has built and works with.

Built from the user's most recent texts with one model call and cached
per user like the fingerprint. The resolver uses it to turn vague
references ("my bot", "the bridge thing") into a named project or tool
before the assistant has to ask.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel

from voiceforge import text as textutil
from voiceforge.cache import DEFAULT_TTL, ArtifactCache
from voiceforge.llm import LLM, complete_text, parse_json_object
from voiceforge.models import KnowledgeEntry, Project, SemanticKnowledgeMap, utcnow
from voiceforge.prompts import build_knowledge_map_prompt, build_reference_prompt
from voiceforge.storage import ArtifactStore, CorpusSource

logger = logging.getLogger(__name__)

MAX_TEXTS = 20
MIN_CONFIDENCE = 0.7


class Resolution(BaseModel):
    name: str
    type: Literal["project", "tool"]
    description: str = ""
    confidence: float
    method: Literal["keyword", "model"]


def _keywords(item: dict[str, Any]) -> list[str]:
    words = [item.get("name", "")] + list(item.get("keywords") or [])
    return [w.strip().lower() for w in words if isinstance(w, str) and w.strip()]


class KnowledgeMapBuilder:
    def __init__(self, corpus: CorpusSource, llm: LLM) -> None:
        self._corpus = corpus
        self._llm = llm

    async def build(self, user_id: str) -> SemanticKnowledgeMap:
        texts = self._corpus.list_exemplar_texts(user_id, order_by="recency", limit=MAX_TEXTS)
        if not texts:
            return SemanticKnowledgeMap()

        output = await complete_text(
            self._llm, "knowledge_map", build_knowledge_map_prompt(texts),
            temperature=0.2, structured=True,
        )
        data = parse_json_object(output)
        if data is None:
            logger.warning("knowledge map extraction returned no JSON object user=%s", user_id)
            return SemanticKnowledgeMap()

        knowledge = SemanticKnowledgeMap(
            expertise=[e for e in data.get("expertise") or [] if isinstance(e, str)],
            recent_work=[w for w in data.get("recent_work") or [] if isinstance(w, str)],
        )
        for item in data.get("projects") or []:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            knowledge.projects.append(Project(
                name=item["name"],
                description=item.get("description") or "",
                technologies=[t for t in item.get("technologies") or [] if isinstance(t, str)],
                keywords=_keywords(item),
            ))
            entry = KnowledgeEntry(type="project", name=item["name"], description=item.get("description") or "")
            for word in _keywords(item):
                knowledge.entries[word] = entry
        for item in data.get("tools") or []:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            entry = KnowledgeEntry(type="tool", name=item["name"], description=item.get("description") or "")
            for word in _keywords(item):
                # projects take precedence over tools on a shared keyword
                knowledge.entries.setdefault(word, entry)

        logger.info("knowledge map built user=%s entries=%d", user_id, len(knowledge.entries))
        return knowledge


class KnowledgeMapCache(ArtifactCache[SemanticKnowledgeMap]):
    NAME = "knowledge_map"

    def __init__(
        self,
        store: ArtifactStore,
        builder: KnowledgeMapBuilder,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(
            store,
            self.NAME,
            SemanticKnowledgeMap,
            builder.build,
            ttl=ttl,
            clock=clock,
            should_persist=lambda m: bool(m.entries or m.expertise),
        )


class SemanticResolver:
    def __init__(self, cache: KnowledgeMapCache, llm: LLM) -> None:
        self._cache = cache
        self._llm = llm

    async def resolve(self, user_id: str, reference: str) -> Resolution | None:
        """Keyword match first (longest wins), then a model judgment above 0.7 confidence."""
        knowledge = await self._cache.get(user_id)
        if not knowledge.entries:
            return None

        matches = [k for k in knowledge.entries if textutil.contains_word(reference, k)]
        if matches:
            keyword = max(matches, key=len)
            entry = knowledge.entries[keyword]
            return Resolution(
                name=entry.name, type=entry.type, description=entry.description,
                confidence=1.0, method="keyword",
            )

        output = await complete_text(
            self._llm, "reference_match", build_reference_prompt(reference, knowledge),
            temperature=0.0, structured=True,
        )
        data = parse_json_object(output) or {}
        name = str(data.get("name") or "").strip().lower()
        try:
            confidence = float(data.get("confidence", 0))
        except (TypeError, ValueError):
            confidence = 0.0
        if not name or confidence <= MIN_CONFIDENCE:
            return None
        for entry in knowledge.entries.values():
            if entry.name.lower() == name:
                return Resolution(
                    name=entry.name, type=entry.type, description=entry.description,
                    confidence=confidence, method="model",
                )
        return None
