"""Core domain models.

All pipeline stages, tools and storage functions operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------

class ExemplarText(BaseModel):
    """One historical user-authored text. Never mutated by the core."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    text: str
    hook: str = ""  # first line of the text
    engagement: float | None = None  # percent; None when unmeasured
    posted_at: datetime = Field(default_factory=utcnow)


class UserProfile(BaseModel):
    user_id: str
    full_name: str = ""
    headline: str = ""
    about: str = ""
    goals: list[str] = Field(default_factory=list)


PatternType = Literal["hook", "format", "cta", "topic", "timing", "emotion"]


class Pattern(BaseModel):
    """A reusable description of what drove engagement in one or more texts."""

    id: str
    user_id: str
    type: PatternType
    description: str
    examples: list[str] = Field(default_factory=list)
    success_rate: float = Field(default=0.0, ge=0, le=100)
    times_used: int = 0
    last_used_at: datetime | None = None


# ---------------------------------------------------------------------------
# Voice fingerprint
# ---------------------------------------------------------------------------

class StyleFingerprint(BaseModel):
    """Structured style profile derived from a user's exemplar texts.

    Only a complete fingerprint (hook patterns, signature phrases and
    forbidden phrases all non-empty) may be used for generation.
    """

    hook_patterns: list[str] = Field(default_factory=list)
    first_sentence_examples: list[str] = Field(default_factory=list)
    signature_phrases: list[str] = Field(default_factory=list)
    forbidden_phrases: list[str] = Field(default_factory=list)
    unique_words: list[str] = Field(default_factory=list)
    avoided_words: list[str] = Field(default_factory=list)

    avg_sentence_length: float = 12.0
    avg_paragraph_count: float = 3.0
    uses_contractions: bool = True
    uses_fragments: bool = False
    uses_emoji: bool = False
    uses_hashtags: bool = False
    uses_bullets: bool = False
    uses_questions: bool = False
    bullet_glyph: str = "-"
    hashtag_style: str = ""

    self_deprecating: bool = False
    conversational: bool = False
    technical: bool = False
    vulnerable: bool = False

    narrative_steps: list[str] = Field(default_factory=list)
    closing_style: str = ""

    source: Literal["extracted", "emergency"] = "extracted"
    exemplar_count: int = 0

    def missing_fields(self) -> list[str]:
        return [
            name for name in ("hook_patterns", "signature_phrases", "forbidden_phrases")
            if not getattr(self, name)
        ]

    def is_complete(self) -> bool:
        return not self.missing_fields()


class KnowledgeEntry(BaseModel):
    type: Literal["project", "tool"]
    name: str
    description: str = ""


class Project(BaseModel):
    name: str
    description: str = ""
    technologies: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class SemanticKnowledgeMap(BaseModel):
    """keyword -> what the user means by it, built from a corpus scan."""

    entries: dict[str, KnowledgeEntry] = Field(default_factory=dict)
    projects: list[Project] = Field(default_factory=list)
    expertise: list[str] = Field(default_factory=list)
    recent_work: list[str] = Field(default_factory=list)


class CachedArtifact(BaseModel):
    """A persisted per-user artifact plus the time it was written."""

    payload: dict[str, Any]
    last_updated: datetime


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """Ephemeral per-call bundle handed to prompt builders."""

    topic: str
    angle: str = ""
    fingerprint: StyleFingerprint
    exemplars: list[ExemplarText] = Field(default_factory=list)
    patterns: list[Pattern] = Field(default_factory=list)


class ValidationVerdict(BaseModel):
    """Score (0-10) for one candidate text. Never mutated, only superseded."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=10)
    issues: list[str] = Field(default_factory=list)
    hard_reject: bool = False
    passes_regenerate: bool  # score >= regenerate threshold
    passes_hard_fail: bool  # score >= hard-fail threshold


class GenerationResult(BaseModel):
    text: str
    score: float
    issues: list[str] = Field(default_factory=list)
    regenerated: bool = False
    pattern_ids: list[str] = Field(default_factory=list)  # patterns shown to the model


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

TurnRole = Literal["user", "assistant", "tool"]


class ConversationTurn(BaseModel):
    """A single entry in a conversation's append-only turn log."""

    model_config = ConfigDict(frozen=True)

    seq: int
    role: TurnRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    id: str
    user_id: str
    title: str = ""
    turn_count: int = 0
    total_tokens: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_turn_at: datetime | None = None


class SummaryRecord(BaseModel):
    """Condensed conversation memory.

    batch records cover turns (after_seq, through_seq]; a deep record
    replaces every earlier record and covers everything up to through_seq.
    """

    kind: Literal["batch", "deep"]
    text: str
    through_seq: int
    turns_included: int
    token_count: int
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class Diagnostics(BaseModel):
    """Why a tool failed and what the orchestrating model can do next."""

    reason: str
    suggestions: list[str] = Field(default_factory=list)
    alternative_data: Any = None


class ToolSuccess(BaseModel):
    status: Literal["ok"] = "ok"
    data: Any = None


class ToolFailure(BaseModel):
    status: Literal["error"] = "error"
    error: str
    diagnostics: Diagnostics


ToolResult = Annotated[Union[ToolSuccess, ToolFailure], Field(discriminator="status")]


class ToolCallRecord(BaseModel):
    """One executed tool call, as handed to the observability sink."""

    conversation_id: str
    user_id: str
    tool: str
    arguments: str  # truncated
    success: bool
    reason: str | None = None
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class AgentRun(BaseModel):
    user_id: str
    conversation_id: str
    request: str
    tools_used: list[str] = Field(default_factory=list)
    context_tokens: int = 0
    response_time_ms: int = 0
    success: bool = True
    outcome: str = ""
    created_at: datetime = Field(default_factory=utcnow)
