"""Conversational agent: tool catalogue and the bounded orchestration loop."""

from .orchestrator import (  # noqa: F401
    EXHAUSTED_MESSAGE,
    MAX_ITERATIONS,
    LoopState,
    Orchestrator,
    TurnOutcome,
)
from .tools import TOOL_DEFINITIONS, ToolContext, ToolName, Toolbox  # noqa: F401
