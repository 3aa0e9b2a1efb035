"""Fixed tool catalogue for the orchestrating model.

Every tool is a member of the closed ToolName enum and has exactly one
handler in Toolbox's dispatch table; construction fails if the two ever
drift apart. Tools are bound to a ToolContext (the conversation's user),
so the model never gets to choose whose data it reads.

execute() never raises for a tool-level failure. Domain, upstream and
argument errors all come back as a ToolFailure whose Diagnostics tell the
model what went wrong and what to try next.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from voiceforge import text as textutil
from voiceforge.coverage import check_topic_coverage
from voiceforge.errors import (
    AuthenticityRejectedError,
    IncompleteFingerprintError,
    NoCorpusError,
    ToolExecutionError,
)
from voiceforge.fingerprint import FingerprintCache
from voiceforge.llm import LLMError, ToolSpec
from voiceforge.models import Diagnostics, PatternType, ToolFailure, ToolSuccess
from voiceforge.patterns import PatternAnalyzer
from voiceforge.pipeline import GenerationPipeline
from voiceforge.semantic import KnowledgeMapCache, SemanticResolver
from voiceforge.status import compute_user_status
from voiceforge.storage import Storage

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    GET_USER_PROFILE = "get_user_profile"
    GET_PATTERNS = "get_patterns"
    GET_TOP_EXAMPLES = "get_top_examples"
    GET_PREVIOUS_OUTPUT = "get_previous_output"
    CHECK_USER_STATUS = "check_user_status"
    REFRESH_FINGERPRINT = "refresh_fingerprint"
    REANALYZE_CORPUS = "reanalyze_corpus"
    RESOLVE_REFERENCE = "resolve_reference"
    CHECK_TOPIC_COVERAGE = "check_topic_coverage"
    GENERATE_POST = "generate_post"


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    conversation_id: str | None = None


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------

class NoArgs(BaseModel):
    pass


class GetPatternsArgs(BaseModel):
    types: list[PatternType] | None = Field(default=None, description="Only these pattern types")
    limit: int = Field(default=5, ge=1, le=20)


class GetTopExamplesArgs(BaseModel):
    limit: int = Field(default=5, ge=1, le=10)


class GetPreviousOutputArgs(BaseModel):
    count: int = Field(default=3, ge=1, le=10, description="How many recent assistant replies to return")


class ResolveReferenceArgs(BaseModel):
    reference: str = Field(min_length=1, description="The user's vague wording, e.g. 'my bot'")


class TopicArgs(BaseModel):
    topic: str = Field(min_length=1)


class GeneratePostArgs(BaseModel):
    topic: str = Field(min_length=1)
    angle: str = Field(default="", description="Optional angle or tone, e.g. 'failure story'")


@dataclass(frozen=True)
class ToolDefinition:
    description: str
    arguments: type[BaseModel]

    def spec(self, name: ToolName) -> ToolSpec:
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        return ToolSpec(name=name.value, description=self.description, parameters=schema)


TOOL_DEFINITIONS: dict[ToolName, ToolDefinition] = {
    ToolName.GET_USER_PROFILE: ToolDefinition(
        "The user's name, headline, about text and goals.", NoArgs),
    ToolName.GET_PATTERNS: ToolDefinition(
        "Engagement patterns extracted from the user's best posts, best first.", GetPatternsArgs),
    ToolName.GET_TOP_EXAMPLES: ToolDefinition(
        "The user's highest-engagement posts, verbatim.", GetTopExamplesArgs),
    ToolName.GET_PREVIOUS_OUTPUT: ToolDefinition(
        "Your most recent replies in this conversation, newest first.", GetPreviousOutputArgs),
    ToolName.CHECK_USER_STATUS: ToolDefinition(
        "Which of the user's data is present or missing, and what to do next.", NoArgs),
    ToolName.REFRESH_FINGERPRINT: ToolDefinition(
        "Re-extract the user's voice fingerprint from their posts.", NoArgs),
    ToolName.REANALYZE_CORPUS: ToolDefinition(
        "Re-run pattern and voice analysis over the user's posts.", NoArgs),
    ToolName.RESOLVE_REFERENCE: ToolDefinition(
        "Work out which of the user's projects or tools a vague mention refers to.", ResolveReferenceArgs),
    ToolName.CHECK_TOPIC_COVERAGE: ToolDefinition(
        "Which angles on a topic the user has already posted about.", TopicArgs),
    ToolName.GENERATE_POST: ToolDefinition(
        "Draft a post in the user's voice. Returns the validated text and its score.", GeneratePostArgs),
}


def _failure(message: str, reason: str, suggestions: list[str] | None = None,
             alternative_data: Any = None) -> ToolFailure:
    return ToolFailure(
        error=message,
        diagnostics=Diagnostics(reason=reason, suggestions=suggestions or [], alternative_data=alternative_data),
    )


def _parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("tool arguments must be a JSON object")
    return data


# ---------------------------------------------------------------------------
# Toolbox
# ---------------------------------------------------------------------------

Handler = Callable[[ToolContext, Any], Awaitable[Any]]


class Toolbox:
    def __init__(
        self,
        storage: Storage,
        fingerprints: FingerprintCache,
        knowledge: KnowledgeMapCache,
        resolver: SemanticResolver,
        analyzer: PatternAnalyzer,
        pipeline: GenerationPipeline,
    ) -> None:
        self._storage = storage
        self._fingerprints = fingerprints
        self._knowledge = knowledge
        self._resolver = resolver
        self._analyzer = analyzer
        self._pipeline = pipeline
        self._handlers: dict[ToolName, Handler] = {
            ToolName.GET_USER_PROFILE: self._get_user_profile,
            ToolName.GET_PATTERNS: self._get_patterns,
            ToolName.GET_TOP_EXAMPLES: self._get_top_examples,
            ToolName.GET_PREVIOUS_OUTPUT: self._get_previous_output,
            ToolName.CHECK_USER_STATUS: self._check_user_status,
            ToolName.REFRESH_FINGERPRINT: self._refresh_fingerprint,
            ToolName.REANALYZE_CORPUS: self._reanalyze_corpus,
            ToolName.RESOLVE_REFERENCE: self._resolve_reference,
            ToolName.CHECK_TOPIC_COVERAGE: self._check_topic_coverage,
            ToolName.GENERATE_POST: self._generate_post,
        }
        missing = (set(ToolName) - set(self._handlers)) | (set(ToolName) - set(TOOL_DEFINITIONS))
        if missing:
            raise RuntimeError(f"Tools without handler or definition: {sorted(m.value for m in missing)}")

    def specs(self) -> list[ToolSpec]:
        return [TOOL_DEFINITIONS[name].spec(name) for name in ToolName]

    async def execute(
        self, name: str, arguments: str | dict[str, Any] | None, ctx: ToolContext,
    ) -> ToolSuccess | ToolFailure:
        try:
            tool = ToolName(name)
        except ValueError:
            return _failure(
                f"Unknown tool {name!r}", "unknown_tool",
                suggestions=["Call one of the listed tools"],
                alternative_data=[t.value for t in ToolName],
            )

        try:
            args = TOOL_DEFINITIONS[tool].arguments.model_validate(_parse_arguments(arguments))
        except (ValueError, ValidationError) as e:
            return _failure(
                f"Invalid arguments for {tool.value}: {e}", "invalid_arguments",
                suggestions=["Retry with arguments matching the tool schema"],
                alternative_data=TOOL_DEFINITIONS[tool].arguments.model_json_schema(),
            )

        try:
            data = await self._handlers[tool](ctx, args)
        except ToolExecutionError as e:
            return ToolFailure(error=str(e), diagnostics=e.diagnostics)
        except NoCorpusError as e:
            return _failure(
                str(e), "no_corpus",
                suggestions=["Tell the user to import some of their posts first; do not write generic content"],
            )
        except IncompleteFingerprintError as e:
            return _failure(
                str(e), "fingerprint_incomplete",
                suggestions=[f"Call {ToolName.REFRESH_FINGERPRINT.value}, then retry"],
                alternative_data={"missing": e.missing},
            )
        except AuthenticityRejectedError as e:
            return _failure(
                str(e), "authenticity_rejected",
                suggestions=["Show the user the issues and ask how to adjust the topic or angle"],
                alternative_data={"score": e.score, "issues": e.issues},
            )
        except LLMError as e:
            return _failure(
                f"Language model unavailable: {e}", "upstream_error",
                suggestions=["Tell the user to try again shortly"],
            )
        except Exception as e:
            logger.exception("tool %s failed unexpectedly", tool.value)
            return _failure(f"Internal error in {tool.value}: {e}", "internal_error")
        return ToolSuccess(data=data)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _get_user_profile(self, ctx: ToolContext, args: NoArgs) -> Any:
        profile = self._storage.get_profile(ctx.user_id)
        if profile is None:
            raise ToolExecutionError("No profile stored for this user", Diagnostics(
                reason="no_profile",
                suggestions=[f"Call {ToolName.CHECK_USER_STATUS.value}", "Continue without profile details"],
            ))
        return profile.model_dump(mode="json")

    def _fallback_hooks(self, user_id: str) -> list[str]:
        cached = self._fingerprints.peek(user_id)
        if cached is not None:
            return cached[0].hook_patterns
        texts = self._storage.list_exemplar_texts(user_id, order_by="recency", limit=5)
        return [t.hook or textutil.first_line(t.text) for t in texts]

    async def _get_patterns(self, ctx: ToolContext, args: GetPatternsArgs) -> Any:
        patterns = self._storage.list_patterns(ctx.user_id, types=args.types, limit=args.limit)
        if patterns:
            return [p.model_dump(mode="json") for p in patterns]
        if not self._storage.list_exemplar_texts(ctx.user_id, order_by="recency", limit=1):
            raise NoCorpusError(ctx.user_id)
        raise ToolExecutionError("No engagement patterns extracted yet", Diagnostics(
            reason="no_patterns",
            suggestions=[f"Use the hooks in alternative_data, or call {ToolName.REANALYZE_CORPUS.value}"],
            alternative_data={"hooks": self._fallback_hooks(ctx.user_id)},
        ))

    async def _get_top_examples(self, ctx: ToolContext, args: GetTopExamplesArgs) -> Any:
        texts = self._storage.list_exemplar_texts(ctx.user_id, order_by="engagement", limit=args.limit)
        if texts:
            return [{"text": t.text, "engagement": t.engagement} for t in texts]
        recent = self._storage.list_exemplar_texts(ctx.user_id, order_by="recency", limit=args.limit)
        if not recent:
            raise NoCorpusError(ctx.user_id)
        raise ToolExecutionError("Posts exist but none has engagement data yet", Diagnostics(
            reason="corpus_unanalyzed",
            suggestions=[f"Call {ToolName.REANALYZE_CORPUS.value} now without asking", "Use the recent posts meanwhile"],
            alternative_data=[{"text": t.text, "posted_at": t.posted_at.isoformat()} for t in recent],
        ))

    async def _get_previous_output(self, ctx: ToolContext, args: GetPreviousOutputArgs) -> Any:
        turns = []
        if ctx.conversation_id:
            turns = self._storage.list_turns(ctx.conversation_id, limit=args.count, role="assistant")
        if not turns:
            raise ToolExecutionError("Nothing has been written in this conversation yet", Diagnostics(
                reason="no_previous_output",
                suggestions=[f"Call {ToolName.GENERATE_POST.value} to write a first draft"],
            ))
        return [{"seq": t.seq, "content": t.content} for t in reversed(turns)]

    async def _check_user_status(self, ctx: ToolContext, args: NoArgs) -> Any:
        return compute_user_status(self._storage, self._fingerprints, ctx.user_id).model_dump(mode="json")

    async def _refresh_fingerprint(self, ctx: ToolContext, args: NoArgs) -> Any:
        fp = await self._fingerprints.refresh(ctx.user_id)
        return {
            "source": fp.source,
            "exemplar_count": fp.exemplar_count,
            "hook_patterns": fp.hook_patterns,
            "signature_phrases": fp.signature_phrases,
            "avg_sentence_length": fp.avg_sentence_length,
        }

    async def _reanalyze_corpus(self, ctx: ToolContext, args: NoArgs) -> Any:
        patterns = await self._analyzer.analyze(ctx.user_id)
        self._knowledge.invalidate(ctx.user_id)
        fp = await self._fingerprints.refresh(ctx.user_id)
        return {
            "patterns_found": len(patterns),
            "pattern_types": sorted({p.type for p in patterns}),
            "fingerprint_source": fp.source,
        }

    async def _resolve_reference(self, ctx: ToolContext, args: ResolveReferenceArgs) -> Any:
        resolution = await self._resolver.resolve(ctx.user_id, args.reference)
        if resolution is None:
            knowledge = await self._knowledge.get(ctx.user_id)
            raise ToolExecutionError(f"Could not tell what {args.reference!r} refers to", Diagnostics(
                reason="unresolved_reference",
                suggestions=["Ask the user which of the known projects they mean"],
                alternative_data=[p.name for p in knowledge.projects],
            ))
        return resolution.model_dump()

    async def _check_topic_coverage(self, ctx: ToolContext, args: TopicArgs) -> Any:
        corpus = self._storage.list_exemplar_texts(ctx.user_id, order_by="recency")
        if not corpus:
            raise NoCorpusError(ctx.user_id)
        return check_topic_coverage(args.topic, corpus).model_dump()

    async def _generate_post(self, ctx: ToolContext, args: GeneratePostArgs) -> Any:
        result = await self._pipeline.generate(ctx.user_id, args.topic, args.angle)
        return result.model_dump()
