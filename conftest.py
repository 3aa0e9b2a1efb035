import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from voiceforge.config import Settings
from voiceforge.llm import Completion, CompletionRequest, ToolCall
from voiceforge.models import ExemplarText, StyleFingerprint
from voiceforge.services import build_services
from voiceforge.storage import Storage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# StubLLM: dispatches by stage name, independent queue per stage
# ---------------------------------------------------------------------------

class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping stage name -> list of responses (in call order).
    A response is a string (the completion text), a Completion (tool calls),
    or an exception instance, which is raised instead of answering.
    Raises if a stage is called more times than responses were provided.
    """

    def __init__(self, responses: dict[str, list] | None = None) -> None:
        self._queues: dict[str, list] = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, CompletionRequest]] = []

    def queue(self, stage: str, *responses) -> None:
        self._queues.setdefault(stage, []).extend(responses)

    async def __call__(self, stage: str, request: CompletionRequest) -> Completion:
        self.calls.append((stage, request))
        queue = self._queues.get(stage)
        if not queue:
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). stages so far: {self.stages()}"
            )
        response = queue.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, Completion):
            return response
        return Completion(content=response)

    async def stream(self, stage: str, request: CompletionRequest):
        """Streams a queued string in word-sized chunks."""
        completion = await self(stage, request)
        for i, word in enumerate(completion.content.split(" ")):
            yield word if i == 0 else " " + word

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def count(self, stage: str) -> int:
        return self.stages().count(stage)

    def prompt(self, stage: str, index: int = 0) -> str:
        """Last user message of the index-th call to stage."""
        requests = [r for s, r in self.calls if s == stage]
        return requests[index].messages[-1].content

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed; catches missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


def tool_call(name: str, arguments: dict | None = None, call_id: str = "call-1") -> Completion:
    """An orchestrator response asking for one tool."""
    return Completion(tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(arguments or {}))])


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SHIPPED_POSTS = [
    ("Our beta broke on day 2. I shipped it anyway. That's how I learned to love rollbacks.", 7.4),
    ("The demo crashed in front of 40 people. I shipped it anyway. Don't wait for perfect.", 9.1),
    ("We lost 3 weeks to a config bug. I shipped it anyway. It's still running today.", 5.6),
    ("The migration failed twice. I shipped it anyway. Can't say I regret it.", 4.2),
    ("My first API died under 100 users. I shipped it anyway. That's the whole story.", 6.8),
]

FINGERPRINT_JSON = {
    "hook_patterns": ["Open with what broke and a number"],
    "first_sentence_examples": ["Our beta broke on day 2."],
    "signature_phrases": ["I shipped it anyway"],
    "forbidden_phrases": ["game-changer"],
    "unique_words": ["shipped"],
    "avoided_words": ["leverage"],
    "narrative_steps": ["Failure", "Refrain", "Short takeaway"],
    "closing_style": "a flat one-line verdict",
    "self_deprecating": True,
    "conversational": True,
}


def make_texts(user_id: str = "u1", posts=SHIPPED_POSTS, with_engagement: bool = True) -> list[ExemplarText]:
    return [
        ExemplarText(
            id=f"{user_id}-{i}",
            user_id=user_id,
            text=text,
            engagement=engagement if with_engagement else None,
            posted_at=NOW - timedelta(days=i),
        )
        for i, (text, engagement) in enumerate(posts)
    ]


def make_fingerprint(**overrides) -> StyleFingerprint:
    fields = {
        "hook_patterns": ["Open with what broke"],
        "signature_phrases": ["I shipped it anyway"],
        "forbidden_phrases": ["game-changer"],
        "avg_sentence_length": 5.13,
        "uses_contractions": True,
        "exemplar_count": 5,
    }
    fields.update(overrides)
    return StyleFingerprint(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    return Storage(tmp_path)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path)


@pytest.fixture
def services(settings: Settings, stub_llm: StubLLM):
    return build_services(settings, llm=stub_llm)
