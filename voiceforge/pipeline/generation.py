"""Style-constrained generation with validation and one regeneration.

Flow for generate(user_id, topic, angle):
  1. Fingerprint from the cache (must be complete) and up to 3 exemplars.
  2. Render the generation prompt and call the model at high temperature.
  3. Humanize the output.
  4. Validate. Below 7/10, render the stricter prompt listing the issues,
     generate once more and humanize again.
  5. Validate the regenerated text. Below 5/10, raise
     AuthenticityRejectedError; unvalidated text is never returned.

At most two generation calls and two validations per invocation. Nothing
is persisted here.
"""

from __future__ import annotations

import logging

from voiceforge.config import ValidationRules
from voiceforge.errors import AuthenticityRejectedError, IncompleteFingerprintError, NoCorpusError
from voiceforge.fingerprint import FingerprintCache
from voiceforge.llm import LLM, complete_text
from voiceforge.models import ExemplarText, GenerationRequest, GenerationResult
from voiceforge.prompts import build_generation_prompt
from voiceforge.storage import CorpusSource, PatternStore

from .humanize import humanize
from .validator import Validator, forbidden_phrases

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.9
MAX_EXEMPLARS = 3
MAX_PATTERNS = 3


class GenerationPipeline:
    def __init__(
        self,
        llm: LLM,
        fingerprints: FingerprintCache,
        corpus: CorpusSource,
        validator: Validator,
        patterns: PatternStore | None = None,
    ) -> None:
        self._llm = llm
        self._fingerprints = fingerprints
        self._corpus = corpus
        self._validator = validator
        self._patterns = patterns

    @property
    def rules(self) -> ValidationRules:
        return self._validator.rules

    def _exemplars(self, user_id: str) -> list[ExemplarText]:
        texts = self._corpus.list_exemplar_texts(user_id, order_by="engagement", limit=MAX_EXEMPLARS)
        if not texts:
            texts = self._corpus.list_exemplar_texts(user_id, order_by="recency", limit=MAX_EXEMPLARS)
        return texts

    async def _draft(self, request: GenerationRequest, issues: list[str] | None = None) -> str:
        prompt = build_generation_prompt(
            request, forbidden_phrases(request.fingerprint, self.rules), issues=issues,
        )
        raw = await complete_text(self._llm, "generation", prompt, temperature=GENERATION_TEMPERATURE)
        return humanize(raw, request.fingerprint, self.rules)

    async def generate(self, user_id: str, topic: str, angle: str = "") -> GenerationResult:
        fingerprint = await self._fingerprints.get(user_id)
        missing = fingerprint.missing_fields()
        if missing:
            raise IncompleteFingerprintError(missing)

        exemplars = self._exemplars(user_id)
        if not exemplars:
            raise NoCorpusError(user_id)
        patterns = self._patterns.list_patterns(user_id, limit=MAX_PATTERNS) if self._patterns else []

        request = GenerationRequest(
            topic=topic, angle=angle, fingerprint=fingerprint,
            exemplars=exemplars, patterns=patterns,
        )

        text = await self._draft(request)
        verdict = await self._validator.validate(text, fingerprint, exemplars, topic, angle)
        regenerated = False

        if not verdict.passes_regenerate:
            logger.info(
                "regenerating user=%s score=%g issues=%s", user_id, verdict.score, "; ".join(verdict.issues),
            )
            text = await self._draft(request, issues=verdict.issues)
            verdict = await self._validator.validate(text, fingerprint, exemplars, topic, angle)
            regenerated = True

        if not verdict.passes_hard_fail:
            logger.warning("generation rejected user=%s score=%g", user_id, verdict.score)
            raise AuthenticityRejectedError(verdict.score, verdict.issues)

        return GenerationResult(
            text=text,
            score=verdict.score,
            issues=verdict.issues,
            regenerated=regenerated,
            pattern_ids=[p.id for p in patterns],
        )
