"""Handlebars prompt rendering for every model call.

Templates are plain module constants rendered through pybars. Use the
triple-stash form ({{{var}}}) for free text so quotes and ampersands reach
the model unescaped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from voiceforge.models import (
    ConversationTurn,
    ExemplarText,
    GenerationRequest,
    SemanticKnowledgeMap,
    SummaryRecord,
    UserProfile,
)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ---------------------------------------------------------------------------
# Custom Handlebars helpers
# ---------------------------------------------------------------------------

def _helper_numbered(this, options, items):
    """{{#numbered array}}{{n}}. {{{item}}}{{/numbered}}: 1-based enumeration."""
    result = []
    for n, item in enumerate(list(items or []), start=1):
        result.extend(options["fn"]({"n": n, "item": item}))
    return result


_HELPERS: dict[str, Callable] = {
    "numbered": _helper_numbered,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context, helpers=_HELPERS)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ---------------------------------------------------------------------------
# Fingerprint extraction
# ---------------------------------------------------------------------------

FINGERPRINT_EXTRACTION = """\
You are analysing how one person writes. Below are {{count}} of their own posts.

{{#numbered texts}}--- POST {{n}} ---
{{{item}}}

{{/numbered}}
Extract their style VERBATIM from these posts. Quote their actual words.
Do not write advice, do not paraphrase, do not invent phrases they never used.

Return a JSON object with exactly these keys:
{
  "hook_patterns": ["3-5 opening-line patterns, quoted or templated from the posts"],
  "first_sentence_examples": ["actual first sentences"],
  "signature_phrases": ["phrases they repeat, copied exactly"],
  "forbidden_phrases": ["corporate or generic phrases this person would never write"],
  "unique_words": ["words they favour"],
  "avoided_words": ["words they never use"],
  "narrative_steps": ["how a typical post progresses, in order"],
  "closing_style": "how their posts end",
  "hashtag_style": "how they use hashtags, or empty",
  "self_deprecating": true,
  "conversational": true,
  "technical": false,
  "vulnerable": false
}
Return only the JSON object."""


def build_extraction_prompt(texts: list[ExemplarText]) -> str:
    return render_prompt(FINGERPRINT_EXTRACTION, {
        "count": len(texts),
        "texts": [t.text for t in texts],
    })


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

GENERATION = """\
Write ONE new post in this person's voice. It must read as if they wrote it.

THEIR ACTUAL POSTS (match these exactly in rhythm and vocabulary):
{{#numbered exemplars}}--- EXAMPLE {{n}} ---
{{{item}}}

{{/numbered}}
HOW THEY OPEN:
{{#each fp.hook_patterns}}- {{{this}}}
{{/each}}
PHRASES THEY USE (include at least one word for word):
{{#each fp.signature_phrases}}- "{{{this}}}"
{{/each}}
NEVER WRITE ANY OF THESE:
{{#each forbidden}}- "{{{this}}}"
{{/each}}
STYLE RULES:
- About {{avg_words}} words per sentence.
{{#if fp.uses_contractions}}- Use contractions (I'm, don't, can't).
{{else}}- Do not use contractions.
{{/if}}{{#if fp.uses_fragments}}- Sentence fragments are fine.
{{/if}}{{#if fp.uses_emoji}}- Emoji are allowed.
{{else}}- No emoji.
{{/if}}{{#if fp.uses_hashtags}}- Hashtags: {{{fp.hashtag_style}}}
{{else}}- No hashtags.
{{/if}}{{#if fp.uses_bullets}}- Bullet lists start with "{{{fp.bullet_glyph}}} ".
{{else}}- No bullet lists.
{{/if}}- No markdown, no bold, no em-dashes, no semicolons.
- Use concrete numbers and specifics.
{{#if fp.narrative_steps}}
STRUCTURE:
{{#numbered fp.narrative_steps}}{{n}}. {{{item}}}
{{/numbered}}{{/if}}{{#if fp.closing_style}}
CLOSING: {{{fp.closing_style}}}
{{/if}}{{#if patterns}}
WHAT HAS WORKED FOR THEM BEFORE:
{{#each patterns}}- ({{type}}) {{{description}}}
{{/each}}{{/if}}
TOPIC: {{{topic}}}
{{#if angle}}ANGLE: {{{angle}}}
{{/if}}{{#if issues}}
YOUR PREVIOUS DRAFT WAS REJECTED. Fix every one of these problems:
{{#each issues}}- {{{this}}}
{{/each}}Stay closer to the example posts than last time. Copy their phrasing.
{{/if}}
Return only the post text. No preamble, no explanation."""


def build_generation_prompt(
    request: GenerationRequest,
    forbidden: list[str],
    issues: list[str] | None = None,
) -> str:
    """Render the generation prompt; passing issues yields the stricter variant."""
    fp = request.fingerprint
    return render_prompt(GENERATION, {
        "exemplars": [e.text for e in request.exemplars],
        "fp": fp.model_dump(),
        "forbidden": forbidden,
        "avg_words": round(fp.avg_sentence_length),
        "patterns": [p.model_dump() for p in request.patterns],
        "topic": request.topic,
        "angle": request.angle,
        "issues": issues or [],
    })


# ---------------------------------------------------------------------------
# Similarity judge
# ---------------------------------------------------------------------------

SIMILARITY_JUDGE = """\
Compare a candidate post against real posts by the same author.

REAL POSTS:
{{#numbered exemplars}}--- POST {{n}} ---
{{{item}}}

{{/numbered}}
CANDIDATE:
{{{candidate}}}

Judge vocabulary, tone, sentence structure and personality. Would a reader
who knows this author believe they wrote the candidate?

Return JSON: {"similarity": <integer 1-10>, "reasoning": "<one sentence>"}"""


def build_similarity_prompt(candidate: str, exemplars: list[ExemplarText]) -> str:
    return render_prompt(SIMILARITY_JUDGE, {
        "candidate": candidate,
        "exemplars": [e.text for e in exemplars],
    })


# ---------------------------------------------------------------------------
# Semantic knowledge map
# ---------------------------------------------------------------------------

KNOWLEDGE_MAP = """\
Read these posts and list what the author has built and works with.

{{#numbered texts}}--- POST {{n}} ---
{{{item}}}

{{/numbered}}
Return JSON:
{
  "projects": [{"name": "...", "description": "...", "technologies": ["..."], "keywords": ["lowercase words people use to refer to it"]}],
  "tools": [{"name": "...", "description": "...", "keywords": ["..."]}],
  "expertise": ["..."],
  "recent_work": ["..."]
}"""


def build_knowledge_map_prompt(texts: list[ExemplarText]) -> str:
    return render_prompt(KNOWLEDGE_MAP, {"texts": [t.text for t in texts]})


REFERENCE_MATCH = """\
The user said: "{{{reference}}}"

Known projects and tools:
{{#each entries}}- {{{name}}} ({{type}}): {{{description}}}
{{/each}}
Which one do they mean? Return JSON:
{"name": "<exact name from the list, or empty>", "confidence": <0.0-1.0>}"""


def build_reference_prompt(reference: str, knowledge: SemanticKnowledgeMap) -> str:
    seen: dict[str, dict] = {}
    for entry in knowledge.entries.values():
        seen.setdefault(entry.name, entry.model_dump())
    return render_prompt(REFERENCE_MATCH, {"reference": reference, "entries": list(seen.values())})


# ---------------------------------------------------------------------------
# Pattern analysis
# ---------------------------------------------------------------------------

PATTERN_EXTRACTION = """\
These are one author's best-performing posts with their engagement rate.

{{#each posts}}--- {{engagement}}% ---
{{{text}}}

{{/each}}
Identify the reusable patterns that drove engagement. Types: hook, format,
cta, topic, timing, emotion.

Return JSON:
{"patterns": [{"type": "hook", "description": "...", "examples": ["quoted from the posts"]}]}"""


def build_pattern_prompt(texts: list[ExemplarText]) -> str:
    return render_prompt(PATTERN_EXTRACTION, {
        "posts": [
            {"text": t.text, "engagement": "?" if t.engagement is None else f"{t.engagement:g}"}
            for t in texts
        ],
    })


# ---------------------------------------------------------------------------
# Conversation summaries
# ---------------------------------------------------------------------------

BATCH_SUMMARY = """\
Summarise this stretch of a conversation between a user and their writing
assistant. Keep decisions, preferences, drafts the user liked or rejected,
and any facts about their work. Drop pleasantries.

{{#each turns}}[{{role}}] {{{content}}}
{{/each}}
Return the summary as plain text, at most 200 words."""


DEEP_SUMMARY = """\
Condense the long-term memory of a conversation into one summary that
replaces everything below. Keep every user preference, decision and fact
that later turns may depend on. Be much shorter than the input.

EARLIER SUMMARIES:
{{#each summaries}}- {{{text}}}
{{/each}}
RECENT TURNS:
{{#each turns}}[{{role}}] {{{content}}}
{{/each}}
Return the summary as plain text, at most 400 words."""


def _turn_dicts(turns: list[ConversationTurn]) -> list[dict[str, Any]]:
    return [{"role": t.role, "content": t.content} for t in turns]


def build_batch_summary_prompt(turns: list[ConversationTurn]) -> str:
    return render_prompt(BATCH_SUMMARY, {"turns": _turn_dicts(turns)})


def build_deep_summary_prompt(
    summaries: list[SummaryRecord], turns: list[ConversationTurn],
) -> str:
    return render_prompt(DEEP_SUMMARY, {
        "summaries": [s.model_dump() for s in summaries],
        "turns": _turn_dicts(turns),
    })


# ---------------------------------------------------------------------------
# Orchestrator system prompt
# ---------------------------------------------------------------------------

ORCHESTRATOR_SYSTEM = """\
You are a writing assistant that drafts posts in the user's own voice.
{{#if profile.full_name}}You are working with {{{profile.full_name}}}{{#if profile.headline}} ({{{profile.headline}}}){{/if}}.
{{/if}}
Use tools to gather what you need before answering. Never invent facts
about the user's work; look them up.

WHEN A TOOL FAILS, FOLLOW ITS DIAGNOSTICS:
- get_top_examples reports corpus_unanalyzed: call reanalyze_corpus right
  away without asking permission, then call get_top_examples again. The
  alternative_data already holds recent posts you can use meanwhile.
- get_patterns reports no_patterns: use the hooks in alternative_data, or
  call reanalyze_corpus.
- Any tool reports no_corpus: tell the user you need some of their posts
  first. Do not write generic content.
- generate_post reports fingerprint_incomplete: call refresh_fingerprint,
  then try generate_post once more.
- generate_post reports authenticity_rejected: show the user the issues and
  ask how to adjust the topic or angle.
- The user mentions something vague ("my project", "that tool"): call
  resolve_reference before asking them what they mean.
- Not sure why data is missing: call check_user_status.

Before proposing a topic, call check_topic_coverage to avoid repeating
angles the user already wrote about. To draft a post, call generate_post;
present its text exactly as returned.
The conversation so far is included; resolve "that post" or "the second
one" from it.
{{#if summaries}}
EARLIER IN THIS CONVERSATION:
{{#each summaries}}- {{{text}}}
{{/each}}{{/if}}"""


def build_system_prompt(
    profile: UserProfile | None, summaries: list[SummaryRecord],
) -> str:
    return render_prompt(ORCHESTRATOR_SYSTEM, {
        "profile": profile.model_dump() if profile else {},
        "summaries": [s.model_dump() for s in summaries],
    })
