"""Tool-calling orchestration loop. Runs one user turn end-to-end.

Turn flow:
  1. Load the last 20 user/assistant turns and any summaries; the
     summaries and the fallback policy go into the system prompt, the
     turns go in as chat history ahead of the new message.
  2. GATHERING: call the model with the tool catalogue.
       tool calls  -> execute them in order, append each result as a
                      tool message, call the model again
       no tools    -> FINALIZING, its content is the answer
       8th call still asks for tools -> EXHAUSTED, a fixed
                      "need another turn" answer
  3. Persist the user and assistant turns, record the run, and hand the
     conversation to the summary scheduler (background, never awaited).

The cancel event is checked before every model call and between tool
executions. A tool call in flight is always allowed to finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from enum import Enum

from pydantic import BaseModel, Field

from voiceforge.context import SummaryScheduler, estimate_message_tokens
from voiceforge.errors import TurnCancelledError
from voiceforge.llm import LLM, ChatMessage, CompletionRequest, ToolCall, stream_completion
from voiceforge.models import AgentRun, ToolCallRecord, ToolFailure
from voiceforge.monitor import AgentMonitor
from voiceforge.prompts import build_system_prompt
from voiceforge.storage import Storage
from voiceforge.text import estimate_tokens, truncate

from .tools import ToolContext, Toolbox

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 8
HISTORY_TURNS = 20
ORCHESTRATOR_TEMPERATURE = 0.7
ARGUMENT_LOG_LIMIT = 200

EXHAUSTED_MESSAGE = (
    "I need another turn to finish this. Reply \"continue\" and I'll pick up "
    "where I left off."
)


class LoopState(str, Enum):
    GATHERING = "gathering"
    FINALIZING = "finalizing"
    EXHAUSTED = "exhausted"


class TurnOutcome(BaseModel):
    state: LoopState
    answer: str
    tools_used: list[str] = Field(default_factory=list)
    iterations: int = 0
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)


class _Turn:
    """Mutable bookkeeping for one run of the loop."""

    def __init__(self, ctx: ToolContext, system_prompt: str, messages: list[ChatMessage]) -> None:
        self.ctx = ctx
        self.system_prompt = system_prompt
        self.messages = messages
        self.state = LoopState.GATHERING
        self.iterations = 0
        self.records: list[ToolCallRecord] = []
        self.answer = ""

    @property
    def tools_used(self) -> list[str]:
        return [r.tool for r in self.records]

    def context_tokens(self) -> int:
        return estimate_tokens(self.system_prompt) + estimate_message_tokens(self.messages)


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise TurnCancelledError("Turn cancelled by caller")


class Orchestrator:
    def __init__(
        self,
        llm: LLM,
        toolbox: Toolbox,
        storage: Storage,
        monitor: AgentMonitor,
        scheduler: SummaryScheduler | None = None,
        max_iterations: int = MAX_ITERATIONS,
    ) -> None:
        self._llm = llm
        self._toolbox = toolbox
        self._storage = storage
        self._monitor = monitor
        self._scheduler = scheduler
        self._max_iterations = max_iterations

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _open(self, user_id: str, conversation_id: str, message: str) -> _Turn:
        conv = self._storage.get_conversation(conversation_id)
        if conv is None:
            conv = self._storage.create_conversation(
                user_id, title=truncate(message, 60), conversation_id=conversation_id,
            )
        elif conv.user_id != user_id:
            raise KeyError(f"Conversation {conversation_id!r} not found")

        history = [
            ChatMessage(role=t.role, content=t.content)
            for t in self._storage.list_turns(conversation_id)
            if t.role in ("user", "assistant")
        ][-HISTORY_TURNS:]
        system_prompt = build_system_prompt(
            self._storage.get_profile(user_id),
            self._storage.list_summaries(conversation_id),
        )
        return _Turn(
            ToolContext(user_id=user_id, conversation_id=conversation_id),
            system_prompt,
            [*history, ChatMessage(role="user", content=message)],
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_tool(self, call: ToolCall, turn: _Turn) -> None:
        started = time.perf_counter()
        result = await self._toolbox.execute(call.name, call.arguments, turn.ctx)
        record = ToolCallRecord(
            conversation_id=turn.ctx.conversation_id or "",
            user_id=turn.ctx.user_id,
            tool=call.name,
            arguments=truncate(call.arguments, ARGUMENT_LOG_LIMIT),
            success=not isinstance(result, ToolFailure),
            reason=result.diagnostics.reason if isinstance(result, ToolFailure) else None,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        turn.records.append(record)
        self._monitor.record_tool_calls([record])
        turn.messages.append(ChatMessage(
            role="tool", tool_call_id=call.id, name=call.name, content=result.model_dump_json(),
        ))

    async def _gather(self, turn: _Turn, cancel: asyncio.Event | None) -> None:
        """Drive the loop until FINALIZING or EXHAUSTED. Sets turn.state and turn.answer."""
        tools = self._toolbox.specs()
        while turn.iterations < self._max_iterations:
            _check_cancel(cancel)
            turn.iterations += 1
            completion = await self._llm("orchestrator", CompletionRequest(
                system_prompt=turn.system_prompt,
                messages=turn.messages,
                tools=tools,
                temperature=ORCHESTRATOR_TEMPERATURE,
            ))
            if not completion.tool_calls:
                turn.state = LoopState.FINALIZING
                turn.answer = completion.content.strip()
                return

            logger.debug(
                "iteration %d requested tools=%s",
                turn.iterations, ",".join(c.name for c in completion.tool_calls),
            )
            turn.messages.append(ChatMessage(
                role="assistant", content=completion.content, tool_calls=completion.tool_calls,
            ))
            if turn.iterations >= self._max_iterations:
                # no model turn left to read the results
                logger.debug("skipping %d tool calls on the last iteration", len(completion.tool_calls))
                break
            for call in completion.tool_calls:
                _check_cancel(cancel)
                await self._run_tool(call, turn)

        logger.warning(
            "orchestration exhausted conversation=%s after %d iterations",
            turn.ctx.conversation_id, turn.iterations,
        )
        turn.state = LoopState.EXHAUSTED
        turn.answer = EXHAUSTED_MESSAGE

    def _finish(self, turn: _Turn, message: str, started: float, success: bool, outcome: str) -> None:
        conversation_id = turn.ctx.conversation_id or ""
        if success:
            self._storage.append_turn(conversation_id, "user", message)
            self._storage.append_turn(conversation_id, "assistant", turn.answer)
        self._monitor.record_run(AgentRun(
            user_id=turn.ctx.user_id,
            conversation_id=conversation_id,
            request=truncate(message, ARGUMENT_LOG_LIMIT),
            tools_used=turn.tools_used,
            context_tokens=turn.context_tokens(),
            response_time_ms=int((time.perf_counter() - started) * 1000),
            success=success and turn.state is LoopState.FINALIZING,
            outcome=outcome,
        ))
        if success and self._scheduler is not None:
            self._scheduler.after_turn(conversation_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        user_id: str,
        conversation_id: str,
        message: str,
        cancel: asyncio.Event | None = None,
    ) -> TurnOutcome:
        started = time.perf_counter()
        turn = self._open(user_id, conversation_id, message)
        try:
            await self._gather(turn, cancel)
        except TurnCancelledError:
            self._finish(turn, message, started, success=False, outcome="cancelled")
            raise
        except Exception as e:
            self._finish(turn, message, started, success=False, outcome=f"error: {e}")
            raise

        self._finish(turn, message, started, success=True, outcome=turn.state.value)
        return TurnOutcome(
            state=turn.state,
            answer=turn.answer,
            tools_used=turn.tools_used,
            iterations=turn.iterations,
            tool_calls=turn.records,
        )

    def stream_turn(
        self,
        user_id: str,
        conversation_id: str,
        message: str,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Same loop as run_turn, but the final answer is streamed as it is produced.

        The conversation is opened here, before iteration starts, so a
        conversation owned by someone else raises KeyError at call time.
        Once the model stops asking for tools, the answer is requested again
        as a stream without the tool catalogue.
        """
        started = time.perf_counter()
        turn = self._open(user_id, conversation_id, message)
        return self._stream(turn, message, started, cancel)

    async def _stream(
        self, turn: _Turn, message: str, started: float, cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        try:
            await self._gather(turn, cancel)
            if turn.state is LoopState.FINALIZING:
                _check_cancel(cancel)
                chunks: list[str] = []
                request = CompletionRequest(
                    system_prompt=turn.system_prompt,
                    messages=turn.messages,
                    temperature=ORCHESTRATOR_TEMPERATURE,
                )
                async for chunk in stream_completion(self._llm, "orchestrator_stream", request):
                    chunks.append(chunk)
                    yield chunk
                streamed = "".join(chunks).strip()
                if streamed:
                    turn.answer = streamed
                elif turn.answer:
                    yield turn.answer
            else:
                yield turn.answer
        except TurnCancelledError:
            self._finish(turn, message, started, success=False, outcome="cancelled")
            raise
        except Exception as e:
            self._finish(turn, message, started, success=False, outcome=f"error: {e}")
            raise
        self._finish(turn, message, started, success=True, outcome=turn.state.value)
