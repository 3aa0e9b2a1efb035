"""FastMCP server exposing the agent's tool catalogue as MCP tools.

Every tool takes the user id explicitly (MCP clients are trusted callers,
unlike the orchestrating model) and returns the same ok/error envelope
the orchestration loop sees, diagnostics included.

Services are replaced via set_services() for tests, or built from the
configured data directory when run as __main__.

Usage:
    uv run python -m backend.mcp_server
"""

from typing import Any

from mcp.server.fastmcp import FastMCP

from voiceforge.agent import ToolContext, ToolName
from voiceforge.services import Services

mcp = FastMCP("voiceforge")

_services: Services | None = None


def set_services(services: Services) -> None:
    """Replace the active services (used in tests)."""
    global _services
    _services = services


def get_services() -> Services:
    if _services is None:
        raise RuntimeError("MCP server has no services; call set_services() first")
    return _services


async def _call(tool: ToolName, user_id: str, conversation_id: str | None = None,
                **arguments: Any) -> dict:
    result = await get_services().toolbox.execute(
        tool.value,
        {k: v for k, v in arguments.items() if v is not None},
        ToolContext(user_id=user_id, conversation_id=conversation_id),
    )
    return result.model_dump(mode="json")


@mcp.tool()
async def get_user_profile(user_id: str) -> dict:
    """The user's name, headline, about text and goals."""
    return await _call(ToolName.GET_USER_PROFILE, user_id)


@mcp.tool()
async def get_patterns(user_id: str, types: list[str] | None = None, limit: int = 5) -> dict:
    """Engagement patterns extracted from the user's best posts, best first."""
    return await _call(ToolName.GET_PATTERNS, user_id, types=types, limit=limit)


@mcp.tool()
async def get_top_examples(user_id: str, limit: int = 5) -> dict:
    """The user's highest-engagement posts, verbatim."""
    return await _call(ToolName.GET_TOP_EXAMPLES, user_id, limit=limit)


@mcp.tool()
async def get_previous_output(user_id: str, conversation_id: str, count: int = 3) -> dict:
    """The assistant's most recent replies in a conversation, newest first."""
    return await _call(ToolName.GET_PREVIOUS_OUTPUT, user_id, conversation_id, count=count)


@mcp.tool()
async def check_user_status(user_id: str) -> dict:
    """Which of the user's data is present or missing, and what to do next."""
    return await _call(ToolName.CHECK_USER_STATUS, user_id)


@mcp.tool()
async def refresh_fingerprint(user_id: str) -> dict:
    """Re-extract the user's voice fingerprint from their posts."""
    return await _call(ToolName.REFRESH_FINGERPRINT, user_id)


@mcp.tool()
async def reanalyze_corpus(user_id: str) -> dict:
    """Re-run pattern and voice analysis over the user's posts."""
    return await _call(ToolName.REANALYZE_CORPUS, user_id)


@mcp.tool()
async def resolve_reference(user_id: str, reference: str) -> dict:
    """Work out which of the user's projects or tools a vague mention refers to."""
    return await _call(ToolName.RESOLVE_REFERENCE, user_id, reference=reference)


@mcp.tool()
async def check_topic_coverage(user_id: str, topic: str) -> dict:
    """Which angles on a topic the user has already posted about."""
    return await _call(ToolName.CHECK_TOPIC_COVERAGE, user_id, topic=topic)


@mcp.tool()
async def generate_post(user_id: str, topic: str, angle: str = "") -> dict:
    """Draft a post in the user's voice. Returns the validated text and its score."""
    return await _call(ToolName.GENERATE_POST, user_id, topic=topic, angle=angle)


if __name__ == "__main__":
    from voiceforge.config import get_config
    from voiceforge.services import build_services

    set_services(build_services(get_config()))
    mcp.run()
