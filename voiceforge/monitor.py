"""Agent observability sink: tool-call log and per-run statistics."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta

from pydantic import BaseModel, Field

from voiceforge.models import AgentRun, ToolCallRecord, utcnow
from voiceforge.storage import Storage

logger = logging.getLogger(__name__)


class ToolUsage(BaseModel):
    tool: str
    count: int


class AgentStats(BaseModel):
    total_requests: int = 0
    avg_response_time_ms: float = 0.0
    success_rate: float = 0.0  # percent
    top_tools: list[ToolUsage] = Field(default_factory=list)


class AgentMonitor:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def record_tool_calls(self, records: list[ToolCallRecord]) -> None:
        for r in records:
            if r.success:
                logger.info("tool call tool=%s ok duration_ms=%d args=%s", r.tool, r.duration_ms, r.arguments)
            else:
                logger.info(
                    "tool call tool=%s failed reason=%s duration_ms=%d args=%s",
                    r.tool, r.reason, r.duration_ms, r.arguments,
                )
        self._storage.append_tool_calls(records)

    def record_run(self, run: AgentRun) -> None:
        logger.info(
            "agent run user=%s conversation=%s success=%s tools=%s time_ms=%d",
            run.user_id, run.conversation_id, run.success, ",".join(run.tools_used), run.response_time_ms,
        )
        self._storage.append_agent_run(run)

    def agent_stats(self, user_id: str, days: int | None = None) -> AgentStats:
        since = utcnow() - timedelta(days=days) if days else None
        runs = self._storage.list_agent_runs(user_id, since=since)
        if not runs:
            return AgentStats()
        tools = Counter(t for r in runs for t in r.tools_used)
        return AgentStats(
            total_requests=len(runs),
            avg_response_time_ms=round(sum(r.response_time_ms for r in runs) / len(runs), 1),
            success_rate=round(100 * sum(1 for r in runs if r.success) / len(runs), 1),
            top_tools=[ToolUsage(tool=t, count=c) for t, c in tools.most_common(5)],
        )
