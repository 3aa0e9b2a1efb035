"""Topic coverage: which angles on a topic the user has already written."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from voiceforge import text as textutil
from voiceforge.models import ExemplarText

_STOPWORDS = {
    "about", "after", "again", "also", "from", "have", "into", "just", "like",
    "more", "that", "their", "them", "then", "there", "this", "what", "when",
    "with", "your",
}

ANGLES: dict[str, list[str]] = {
    "failure story": ["broke", "failed", "fail", "crashed", "died", "mistake", "wrong", "lost"],
    "build story": ["built", "build", "shipped", "launched", "made", "wrote", "released"],
    "lessons": ["learned", "lesson", "taught", "realized", "advice", "tip"],
    "numbers and results": ["users", "revenue", "signups", "growth", "percent", "%"],
    "behind the scenes": ["how", "stack", "setup", "process", "workflow"],
}


class TopicCoverage(BaseModel):
    topic: str
    matching_texts: int
    covered_angles: list[str] = Field(default_factory=list)
    uncovered_angles: list[str] = Field(default_factory=list)
    suggested_angle: str | None = None
    examples: list[str] = Field(default_factory=list)  # opening lines of matching texts


def topic_terms(topic: str) -> list[str]:
    words = re.findall(r"[a-z0-9][a-z0-9'-]+", topic.lower())
    return [w for w in words if len(w) > 3 and w not in _STOPWORDS]


def _mentions(text: str, word: str) -> bool:
    if word.isalnum():
        return textutil.contains_word(text, word)
    return textutil.contains_phrase(text, word)


def check_topic_coverage(topic: str, corpus: list[ExemplarText]) -> TopicCoverage:
    terms = topic_terms(topic)
    matching = [
        t for t in corpus
        if terms and any(textutil.contains_word(t.text, term) for term in terms)
    ]

    covered = [
        angle for angle, words in ANGLES.items()
        if any(_mentions(t.text, w) for t in matching for w in words)
    ]
    uncovered = [a for a in ANGLES if a not in covered]

    return TopicCoverage(
        topic=topic,
        matching_texts=len(matching),
        covered_angles=covered,
        uncovered_angles=uncovered,
        suggested_angle=uncovered[0] if uncovered else None,
        examples=[textutil.first_line(t.text) for t in matching[:3]],
    )
