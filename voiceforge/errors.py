"""Domain error taxonomy.

Upstream (network / provider) failures live in voiceforge.llm next to the
client that raises them. Everything here is raised by the core itself.

Propagation:
  NoCorpusError, IncompleteFingerprintError, AuthenticityRejectedError
      surface to the caller as typed errors.
  ToolExecutionError
      raised inside tool handlers and folded into a ToolResult by the
      toolbox; it never escapes the orchestration loop.
  TurnCancelledError
      raised by the orchestration loop when its cancel signal is set.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voiceforge.models import Diagnostics


class VoiceForgeError(Exception):
    """Base class for all core errors."""


class NoCorpusError(VoiceForgeError):
    """The user has no exemplar texts at all."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No exemplar texts found for user {user_id!r}")


class IncompleteFingerprintError(VoiceForgeError):
    """A fingerprint is missing hook patterns, signature phrases or forbidden phrases."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Style fingerprint incomplete, missing: {', '.join(missing)}")


class AuthenticityRejectedError(VoiceForgeError):
    """Generated text never reached an acceptable validation score."""

    def __init__(self, score: float, issues: list[str]) -> None:
        self.score = score
        self.issues = issues
        detail = "; ".join(issues) if issues else "no issues reported"
        super().__init__(f"Generated text failed validation (score {score:g}/10): {detail}")


class ToolExecutionError(VoiceForgeError):
    """A tool could not produce its result. Carries the diagnostic payload."""

    def __init__(self, message: str, diagnostics: Diagnostics) -> None:
        self.diagnostics = diagnostics
        super().__init__(message)


class TurnCancelledError(VoiceForgeError):
    """The caller cancelled an orchestration turn."""
