"""Two-stage authenticity validator plus a model similarity judge.

Stage A  hard rejects: wrong bullet glyph, a forbidden phrase, or a
         corporate denylist word. Score 0, nothing else is checked and the
         judge is not called.
Stage B  soft score: start at 10, subtract penalties, floor at 0.
Stage C  the judge compares the candidate with the exemplars (1-10).

Final score = min(stage B, stage C).
"""

from __future__ import annotations

import logging

from voiceforge import text as textutil
from voiceforge.config import ValidationRules
from voiceforge.llm import LLM, complete_text, parse_json_object
from voiceforge.models import ExemplarText, StyleFingerprint, ValidationVerdict
from voiceforge.prompts import build_similarity_prompt

logger = logging.getLogger(__name__)

REGENERATE_THRESHOLD = 7
HARD_FAIL_THRESHOLD = 5
DEFAULT_SIMILARITY = 5

PENALTY_SIGNATURE = 4
PENALTY_FAILURE_VOCABULARY = 3
PENALTY_SENTENCE_LENGTH = 2
PENALTY_CONTRACTIONS = 1
PENALTY_SOFTENED = 1
PENALTY_NO_NUMBERS = 2


def forbidden_phrases(fingerprint: StyleFingerprint, rules: ValidationRules) -> list[str]:
    """Fingerprint forbidden phrases plus configured hard-reject phrases, deduplicated."""
    seen: dict[str, str] = {}
    for phrase in [*fingerprint.forbidden_phrases, *rules.hard_reject_phrases]:
        seen.setdefault(phrase.lower(), phrase)
    return list(seen.values())


def implies_failure(topic: str, angle: str, rules: ValidationRules) -> bool:
    subject = f"{topic} {angle}".lower()
    return any(marker in subject for marker in rules.failure_markers)


class Validator:
    def __init__(
        self,
        llm: LLM,
        rules: ValidationRules | None = None,
        regenerate_threshold: float = REGENERATE_THRESHOLD,
        hard_fail_threshold: float = HARD_FAIL_THRESHOLD,
    ) -> None:
        self._llm = llm
        self._rules = rules or ValidationRules()
        self._regenerate_threshold = regenerate_threshold
        self._hard_fail_threshold = hard_fail_threshold

    @property
    def rules(self) -> ValidationRules:
        return self._rules

    def _verdict(self, score: float, issues: list[str], hard_reject: bool = False) -> ValidationVerdict:
        return ValidationVerdict(
            score=score,
            issues=issues,
            hard_reject=hard_reject,
            passes_regenerate=score >= self._regenerate_threshold,
            passes_hard_fail=score >= self._hard_fail_threshold,
        )

    # ------------------------------------------------------------------
    # Stage A
    # ------------------------------------------------------------------

    def hard_reject_issues(self, text: str, fingerprint: StyleFingerprint) -> list[str]:
        issues: list[str] = []
        wrong = sorted({m for m in textutil.bullet_markers(text) if m != fingerprint.bullet_glyph})
        if wrong:
            issues.append(
                f"Wrong bullet glyph {' '.join(repr(g) for g in wrong)}, expected {fingerprint.bullet_glyph!r}"
            )
        for phrase in forbidden_phrases(fingerprint, self._rules):
            if textutil.contains_phrase(text, phrase):
                issues.append(f"Contains forbidden phrase: {phrase!r}")
        for word in self._rules.corporate_denylist:
            if textutil.contains_word(text, word):
                issues.append(f"Contains corporate word: {word!r}")
        return issues

    # ------------------------------------------------------------------
    # Stage B
    # ------------------------------------------------------------------

    def soft_score(
        self, text: str, fingerprint: StyleFingerprint, topic: str = "", angle: str = "",
    ) -> tuple[float, list[str]]:
        score = 10.0
        issues: list[str] = []

        if not any(textutil.contains_phrase(text, p) for p in fingerprint.signature_phrases):
            score -= PENALTY_SIGNATURE
            issues.append("Missing every signature phrase")

        if implies_failure(topic, angle, self._rules) and not any(
            textutil.contains_word(text, w) for w in self._rules.failure_vocabulary
        ):
            score -= PENALTY_FAILURE_VOCABULARY
            issues.append(
                f"Failure story without direct failure words ({', '.join(self._rules.failure_vocabulary)})"
            )

        avg = textutil.average_sentence_length(text)
        if fingerprint.avg_sentence_length > 0 and abs(avg - fingerprint.avg_sentence_length) > self._rules.sentence_length_tolerance:
            score -= PENALTY_SENTENCE_LENGTH
            issues.append(
                f"Average sentence length {avg:.1f} words, expected about {fingerprint.avg_sentence_length:.0f}"
            )

        if textutil.has_contractions(text) != fingerprint.uses_contractions:
            score -= PENALTY_CONTRACTIONS
            issues.append(
                "Missing contractions" if fingerprint.uses_contractions else "Uses contractions this author avoids"
            )

        for soft, direct in self._rules.softened_phrases.items():
            if textutil.contains_word(text, soft):
                score -= PENALTY_SOFTENED
                issues.append(f"Softened language: {soft!r}, say {direct!r}")

        if self._rules.expect_numbers and not textutil.has_digits(text):
            score -= PENALTY_NO_NUMBERS
            issues.append("No concrete numbers")

        return max(0.0, score), issues

    # ------------------------------------------------------------------
    # Stage C
    # ------------------------------------------------------------------

    async def judge_similarity(self, text: str, exemplars: list[ExemplarText]) -> tuple[float, str]:
        output = await complete_text(
            self._llm, "similarity_judge", build_similarity_prompt(text, exemplars),
            temperature=0.0, structured=True,
        )
        data = parse_json_object(output) or {}
        try:
            similarity = float(data["similarity"])
        except (KeyError, TypeError, ValueError):
            logger.warning("similarity judge returned no usable score, assuming %d", DEFAULT_SIMILARITY)
            return float(DEFAULT_SIMILARITY), ""
        return min(10.0, max(1.0, similarity)), str(data.get("reasoning") or "")

    # ------------------------------------------------------------------

    async def validate(
        self,
        text: str,
        fingerprint: StyleFingerprint,
        exemplars: list[ExemplarText],
        topic: str = "",
        angle: str = "",
    ) -> ValidationVerdict:
        rejects = self.hard_reject_issues(text, fingerprint)
        if rejects:
            logger.info("hard reject: %s", "; ".join(rejects))
            return self._verdict(0.0, rejects, hard_reject=True)

        score, issues = self.soft_score(text, fingerprint, topic, angle)
        if exemplars:
            similarity, reasoning = await self.judge_similarity(text, exemplars[:3])
            if similarity < self._regenerate_threshold:
                detail = f": {reasoning}" if reasoning else ""
                issues.append(f"Does not sound like the author (similarity {similarity:g}/10){detail}")
            score = min(score, similarity)

        logger.info("validation score=%g issues=%d", score, len(issues))
        return self._verdict(score, issues)
