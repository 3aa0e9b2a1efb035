"""Token-budgeted conversation memory.

Two compaction tiers keep a growing conversation under the 200k ceiling:

  batch  every 10th turn, the turns since the last summary are condensed
         into one appended SummaryRecord.
  deep   once the running total reaches 180k tokens, every summary plus the
         last 20 raw turns are condensed into a single record that replaces
         all earlier ones.

Both write the new record in one atomic file replace; a failure anywhere
before that leaves the previous records untouched. SummaryScheduler runs
them as background tasks after a turn has been answered, so the request
path never waits on them and never sees their errors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Sequence
from typing import Any, Literal

from pydantic import BaseModel

from voiceforge.llm import LLM, ChatMessage, complete_text
from voiceforge.models import ConversationTurn, SummaryRecord
from voiceforge.prompts import build_batch_summary_prompt, build_deep_summary_prompt
from voiceforge.storage import ConversationStore
from voiceforge.text import estimate_tokens

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
DEEP_THRESHOLD = 180_000
MAX_TOKENS = 200_000
MIN_BATCH_TURNS = 5
RECENT_WINDOW = 20

HealthStatus = Literal["healthy", "warning", "critical"]


def should_batch_summarize(turn_count: int) -> bool:
    return turn_count > 0 and turn_count % BATCH_SIZE == 0


def should_deep_summarize(total_tokens: int) -> bool:
    return total_tokens >= DEEP_THRESHOLD


def estimate_message_tokens(messages: Sequence[ChatMessage | ConversationTurn]) -> int:
    """Content tokens plus 4 of framing per message and 3 for the list."""
    if not messages:
        return 0
    return sum(estimate_tokens(m.content) + 4 for m in messages) + 3


def health_status(utilization: float) -> HealthStatus:
    if utilization < 75:
        return "healthy"
    if utilization < 90:
        return "warning"
    return "critical"


class ContextMetrics(BaseModel):
    conversation_id: str
    turn_count: int
    summary_count: int
    current_tokens: int
    max_tokens: int = MAX_TOKENS
    utilization: float  # percent of max_tokens
    needs_deep_summary: bool
    health: HealthStatus


class ContextManager:
    def __init__(self, store: ConversationStore, llm: LLM) -> None:
        self._store = store
        self._llm = llm

    @property
    def store(self) -> ConversationStore:
        return self._store

    def metrics(self, conversation_id: str) -> ContextMetrics | None:
        conv = self._store.get_conversation(conversation_id)
        if conv is None:
            return None
        utilization = round(100 * conv.total_tokens / MAX_TOKENS, 2)
        return ContextMetrics(
            conversation_id=conversation_id,
            turn_count=conv.turn_count,
            summary_count=len(self._store.list_summaries(conversation_id)),
            current_tokens=conv.total_tokens,
            utilization=utilization,
            needs_deep_summary=should_deep_summarize(conv.total_tokens),
            health=health_status(utilization),
        )

    async def batch_summarize(self, conversation_id: str) -> SummaryRecord | None:
        """Condense turns after the last summary. Skips slices under 5 turns."""
        summaries = self._store.list_summaries(conversation_id)
        covered = max((s.through_seq for s in summaries), default=0)
        pending = [t for t in self._store.list_turns(conversation_id) if t.seq > covered]
        if len(pending) < MIN_BATCH_TURNS:
            logger.info(
                "batch summary skipped conversation=%s pending=%d", conversation_id, len(pending),
            )
            return None

        text = (await complete_text(
            self._llm, "summary_batch", build_batch_summary_prompt(pending), temperature=0.3,
        )).strip()
        if not text:
            logger.warning("batch summary empty conversation=%s, keeping previous records", conversation_id)
            return None

        record = SummaryRecord(
            kind="batch",
            text=text,
            through_seq=pending[-1].seq,
            turns_included=len(pending),
            token_count=estimate_tokens(text),
        )
        self._store.append_summary(conversation_id, record)
        logger.info(
            "batch summary written conversation=%s turns=%d tokens=%d",
            conversation_id, record.turns_included, record.token_count,
        )
        return record

    async def deep_summarize(self, conversation_id: str) -> SummaryRecord | None:
        """Replace all records with one; kept only when it shrinks the stored context."""
        summaries = self._store.list_summaries(conversation_id)
        turns = self._store.list_turns(conversation_id, limit=RECENT_WINDOW)
        if not summaries and not turns:
            return None

        text = (await complete_text(
            self._llm, "summary_deep", build_deep_summary_prompt(summaries, turns), temperature=0.3,
        )).strip()
        if not text:
            logger.warning("deep summary empty conversation=%s, keeping previous records", conversation_id)
            return None

        covered = max((s.through_seq for s in summaries), default=0)
        through_seq = max(covered, turns[-1].seq if turns else 0)
        previous_tokens = (
            sum(s.token_count for s in summaries)
            + sum(estimate_tokens(t.content) for t in turns)
        )
        record = SummaryRecord(
            kind="deep",
            text=text,
            through_seq=through_seq,
            turns_included=sum(s.turns_included for s in summaries)
            + sum(1 for t in turns if t.seq > covered),
            token_count=estimate_tokens(text),
        )
        if record.token_count >= previous_tokens:
            logger.warning(
                "deep summary did not shrink context conversation=%s (%d >= %d), keeping previous records",
                conversation_id, record.token_count, previous_tokens,
            )
            return None

        self._store.replace_summaries(conversation_id, [record])
        self._store.set_total_tokens(conversation_id, record.token_count)
        logger.info(
            "deep summary written conversation=%s tokens %d -> %d",
            conversation_id, previous_tokens, record.token_count,
        )
        return record


class SummaryScheduler:
    """Fire-and-forget summarisation after each answered turn."""

    def __init__(self, manager: ContextManager) -> None:
        self._manager = manager
        self._tasks: set[asyncio.Task] = set()

    def after_turn(self, conversation_id: str) -> asyncio.Task | None:
        conv = self._manager.store.get_conversation(conversation_id)
        if conv is None:
            return None
        if should_deep_summarize(conv.total_tokens):
            return self._spawn("deep", conversation_id, self._manager.deep_summarize(conversation_id))
        if should_batch_summarize(conv.turn_count):
            return self._spawn("batch", conversation_id, self._manager.batch_summarize(conversation_id))
        return None

    def _spawn(self, kind: str, conversation_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        logger.debug("scheduling %s summary conversation=%s", kind, conversation_id)
        task = asyncio.create_task(self._run(kind, conversation_id, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, kind: str, conversation_id: str, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except Exception:
            logger.exception("%s summary failed conversation=%s", kind, conversation_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled summary. Tests and shutdown only."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
