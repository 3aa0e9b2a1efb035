"""Tests for fingerprint extraction, local style metrics and caching."""

import json

import pytest

from conftest import FINGERPRINT_JSON, SHIPPED_POSTS, StubLLM, make_texts
from voiceforge.errors import NoCorpusError
from voiceforge.fingerprint import (
    EMERGENCY_FINGERPRINT,
    EXTRACTION_TEMPERATURE,
    FingerprintCache,
    FingerprintExtractor,
    compute_style_metrics,
)


# ---------------------------------------------------------------------------
# compute_style_metrics
# ---------------------------------------------------------------------------

def test_metrics_on_shipped_corpus():
    metrics = compute_style_metrics([text for text, _ in SHIPPED_POSTS])
    assert metrics["avg_sentence_length"] == 5.13
    assert metrics["avg_paragraph_count"] == 1.0
    assert metrics["uses_contractions"] is True
    assert metrics["uses_fragments"] is False
    assert metrics["uses_emoji"] is False
    assert metrics["uses_bullets"] is False
    assert metrics["bullet_glyph"] == "-"


def test_metrics_pick_most_common_bullet_glyph():
    texts = ["List:\n* a\n* b", "Other:\n- c", "More:\n* d"]
    metrics = compute_style_metrics(texts)
    assert metrics["uses_bullets"] is True
    assert metrics["bullet_glyph"] == "*"


def test_metrics_contractions_need_half_the_texts():
    assert compute_style_metrics(["I don't.", "I do not.", "I will not."])["uses_contractions"] is False
    assert compute_style_metrics(["I don't.", "I do not."])["uses_contractions"] is True


def test_metrics_empty():
    assert compute_style_metrics([]) == {}


# ---------------------------------------------------------------------------
# FingerprintExtractor
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_corpus_raises_before_model_call(storage):
    llm = StubLLM()
    with pytest.raises(NoCorpusError):
        await FingerprintExtractor(storage, llm).extract("u1")
    assert llm.calls == []


@pytest.mark.asyncio
async def test_extract_merges_model_fields_with_local_metrics(storage):
    storage.add_exemplar_texts("u1", make_texts())
    payload = {**FINGERPRINT_JSON, "avg_sentence_length": 40, "uses_emoji": True}
    llm = StubLLM({"fingerprint_extraction": [json.dumps(payload)]})

    fp = await FingerprintExtractor(storage, llm).extract("u1")

    assert fp.source == "extracted"
    assert fp.exemplar_count == 5
    assert fp.signature_phrases == ["I shipped it anyway"]
    assert fp.self_deprecating is True
    # measured, not taken from the model
    assert fp.avg_sentence_length == 5.13
    assert fp.uses_emoji is False

    _, request = llm.calls[0]
    assert request.structured is True
    assert request.temperature == EXTRACTION_TEMPERATURE


@pytest.mark.asyncio
async def test_prompt_uses_top_engagement_texts(storage):
    posts = [(f"Post number {i}. It broke.", float(i)) for i in range(12)]
    storage.add_exemplar_texts("u1", make_texts(posts=posts))
    llm = StubLLM({"fingerprint_extraction": [json.dumps(FINGERPRINT_JSON)]})

    fp = await FingerprintExtractor(storage, llm).extract("u1")

    prompt = llm.prompt("fingerprint_extraction")
    assert "Post number 11." in prompt
    assert "Post number 1." not in prompt
    assert fp.exemplar_count == 10


@pytest.mark.asyncio
async def test_falls_back_to_recent_texts_without_engagement(storage):
    storage.add_exemplar_texts("u1", make_texts(with_engagement=False))
    llm = StubLLM({"fingerprint_extraction": [json.dumps(FINGERPRINT_JSON)]})

    fp = await FingerprintExtractor(storage, llm).extract("u1")
    assert fp.exemplar_count == 5


@pytest.mark.asyncio
async def test_first_sentences_default_to_opening_lines(storage):
    storage.add_exemplar_texts("u1", make_texts())
    payload = {k: v for k, v in FINGERPRINT_JSON.items() if k != "first_sentence_examples"}
    llm = StubLLM({"fingerprint_extraction": [json.dumps(payload)]})

    fp = await FingerprintExtractor(storage, llm).extract("u1")
    assert fp.first_sentence_examples[0] == SHIPPED_POSTS[1][0]


@pytest.mark.parametrize("output", [
    "not json at all",
    json.dumps({**FINGERPRINT_JSON, "signature_phrases": []}),
    json.dumps({"hook_patterns": "should be a list"}),
])
@pytest.mark.asyncio
async def test_bad_output_yields_emergency_fingerprint(storage, output):
    storage.add_exemplar_texts("u1", make_texts())
    llm = StubLLM({"fingerprint_extraction": [output]})

    fp = await FingerprintExtractor(storage, llm).extract("u1")
    assert fp.source == "emergency"
    assert fp.is_complete()
    assert fp.hook_patterns == EMERGENCY_FINGERPRINT.hook_patterns


# ---------------------------------------------------------------------------
# FingerprintCache
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cache_persists_extracted_fingerprint(storage):
    storage.add_exemplar_texts("u1", make_texts())
    llm = StubLLM({"fingerprint_extraction": [json.dumps(FINGERPRINT_JSON)]})
    cache = FingerprintCache(storage, FingerprintExtractor(storage, llm))

    first = await cache.get("u1")
    second = await cache.get("u1")
    assert first == second
    assert llm.count("fingerprint_extraction") == 1
    assert storage.get_artifact("u1", "fingerprint") is not None


@pytest.mark.asyncio
async def test_cache_never_persists_emergency_fingerprint(storage):
    storage.add_exemplar_texts("u1", make_texts())
    llm = StubLLM({"fingerprint_extraction": ["{}", json.dumps(FINGERPRINT_JSON)]})
    cache = FingerprintCache(storage, FingerprintExtractor(storage, llm))

    assert (await cache.get("u1")).source == "emergency"
    assert storage.get_artifact("u1", "fingerprint") is None
    assert (await cache.get("u1")).source == "extracted"
    assert llm.count("fingerprint_extraction") == 2
