"""Tests for pattern extraction and success-rate learning."""

import json

import pytest

from conftest import StubLLM, make_texts
from voiceforge.errors import NoCorpusError
from voiceforge.models import Pattern
from voiceforge.patterns import PatternAnalyzer, PatternLearner, pattern_id

PATTERNS_JSON = {"patterns": [
    {"type": "hook", "description": "Open with what broke", "examples": ["Our beta broke on day 2."]},
    {"type": "format", "description": "Three short sentences"},
    {"type": "vibes", "description": "not a real type"},
    {"type": "cta", "description": ""},
]}


def test_pattern_id_stable_and_case_insensitive():
    assert pattern_id("u1", "hook", "Open with what broke") == pattern_id("u1", "hook", " open with what broke ")
    assert pattern_id("u1", "hook", "x") != pattern_id("u2", "hook", "x")
    assert pattern_id("u1", "hook", "x").startswith("pat-")


# ---------------------------------------------------------------------------
# PatternAnalyzer
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_upserts_valid_patterns(storage):
    storage.add_exemplar_texts("u1", make_texts())
    llm = StubLLM({"pattern_extraction": [json.dumps(PATTERNS_JSON)]})

    patterns = await PatternAnalyzer(storage, storage, llm).analyze("u1")

    assert [p.type for p in patterns] == ["hook", "format"]
    assert len(storage.list_patterns("u1")) == 2
    assert "9.1%" in llm.prompt("pattern_extraction")


@pytest.mark.asyncio
async def test_analyze_preserves_learned_state(storage):
    storage.add_exemplar_texts("u1", make_texts())
    pid = pattern_id("u1", "hook", "Open with what broke")
    storage.upsert_pattern(Pattern(id=pid, user_id="u1", type="hook", description="Open with what broke",
                                   success_rate=60, times_used=4))
    llm = StubLLM({"pattern_extraction": [json.dumps(PATTERNS_JSON)]})

    await PatternAnalyzer(storage, storage, llm).analyze("u1")

    kept = storage.get_pattern(pid)
    assert kept.success_rate == 60
    assert kept.times_used == 4
    assert kept.examples == ["Our beta broke on day 2."]


@pytest.mark.asyncio
async def test_analyze_without_corpus(storage):
    llm = StubLLM()
    with pytest.raises(NoCorpusError):
        await PatternAnalyzer(storage, storage, llm).analyze("u1")
    assert llm.calls == []


# ---------------------------------------------------------------------------
# PatternLearner
# ---------------------------------------------------------------------------

@pytest.fixture
def seeded(storage):
    storage.upsert_pattern(Pattern(id="p1", user_id="u1", type="hook", description="a", success_rate=50))
    storage.upsert_pattern(Pattern(id="p2", user_id="u1", type="cta", description="b", success_rate=0))
    return storage


def test_loved_and_performing_moves_toward_100(seeded):
    updated = PatternLearner(seeded).record_feedback(["p1", "p2"], engagement=8.0, feedback="loved")
    assert [p.success_rate for p in updated] == [55.0, 10.0]
    assert seeded.get_pattern("p1").times_used == 1


@pytest.mark.parametrize("engagement,feedback", [
    (8.0, "liked"),
    (8.0, "disliked"),
    (5.0, "loved"),
    (1.0, "loved"),
])
def test_other_feedback_changes_nothing(seeded, engagement, feedback):
    assert PatternLearner(seeded).record_feedback(["p1"], engagement, feedback) == []
    assert seeded.get_pattern("p1").success_rate == 50
    assert seeded.get_pattern("p1").times_used == 0


def test_unknown_pattern_skipped(seeded):
    updated = PatternLearner(seeded).record_feedback(["nope", "p1"], engagement=9.0, feedback="loved")
    assert [p.id for p in updated] == ["p1"]


def test_rate_converges_without_exceeding_100(seeded):
    learner = PatternLearner(seeded)
    for _ in range(100):
        learner.record_feedback(["p1"], engagement=9.0, feedback="loved")
    rate = seeded.get_pattern("p1").success_rate
    assert 99.0 < rate <= 100.0
