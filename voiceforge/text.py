"""Pure text helpers: token estimation, sentence metrics, phrase matching.

No model calls and no I/O. Everything here is deterministic so the
fingerprint metrics and validator rules built on top stay reproducible.
"""

from __future__ import annotations

import math
import re

CHARS_PER_TOKEN = 4

CONTRACTION_RE = re.compile(
    r"\b(?:I'm|I've|I'd|I'll|you're|we're|they're|it's|that's|there's|here's|"
    r"what's|don't|doesn't|didn't|can't|won't|isn't|wasn't|aren't|couldn't|"
    r"shouldn't|wouldn't)\b",
    re.IGNORECASE,
)
EMOJI_RE = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F1E6-\U0001F1FF]"
)
HASHTAG_RE = re.compile(r"(?<!\w)#\w+")
DIGIT_RE = re.compile(r"\d")
BULLET_RE = re.compile(r"^[ \t]*([*•·–-])[ \t]+", re.MULTILINE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """Approximate token count at a fixed characters-per-token ratio."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def count_words(text: str) -> int:
    return len(text.split())


def average_sentence_length(text: str) -> float:
    """Mean words per sentence; 0.0 for text without sentences."""
    sentences = split_sentences(text)
    if not sentences:
        return 0.0
    return count_words(text) / len(sentences)


def average_paragraph_count(texts: list[str]) -> float:
    if not texts:
        return 0.0
    paragraphs = [p for t in texts for p in t.split("\n\n") if p.strip()]
    return len(paragraphs) / len(texts)


def first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def has_contractions(text: str) -> bool:
    return bool(CONTRACTION_RE.search(text))


def has_emoji(text: str) -> bool:
    return bool(EMOJI_RE.search(text))


def strip_emoji(text: str) -> str:
    return EMOJI_RE.sub("", text)


def has_hashtags(text: str) -> bool:
    return bool(HASHTAG_RE.search(text))


def has_digits(text: str) -> bool:
    return bool(DIGIT_RE.search(text))


def has_fragments(text: str, max_words: int = 3) -> bool:
    """True when any sentence is a short fragment ("Totally worth it.")."""
    return any(count_words(s) <= max_words for s in split_sentences(text))


def bullet_markers(text: str) -> list[str]:
    """Bullet glyphs used at the start of lines, in order of appearance."""
    return BULLET_RE.findall(text)


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive substring match."""
    return phrase.lower() in text.lower()


def contains_word(text: str, word: str) -> bool:
    """Case-insensitive whole-word match."""
    return re.search(rf"\b{re.escape(word)}\b", text, re.IGNORECASE) is not None


def truncate(text: str, limit: int = 120) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
