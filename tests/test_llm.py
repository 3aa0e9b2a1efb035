"""Tests for voiceforge.llm: HttpLLM, RetryingLLM, EchoLLM and helpers."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from voiceforge.llm import (
    ChatMessage,
    Completion,
    CompletionRequest,
    EchoLLM,
    HttpLLM,
    LLMError,
    RetryingLLM,
    ToolSpec,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    complete_text,
    is_retryable,
    parse_json_object,
    stream_completion,
)


def _request(text: str = "hello", **kwargs) -> CompletionRequest:
    return CompletionRequest(messages=[ChatMessage(role="user", content=text)], **kwargs)


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    @pytest.mark.asyncio
    async def test_returns_last_user_message(self) -> None:
        llm = EchoLLM()
        request = CompletionRequest(messages=[
            ChatMessage(role="user", content="first"),
            ChatMessage(role="assistant", content="reply"),
            ChatMessage(role="user", content="second"),
        ])
        result = await llm("orchestrator", request)
        assert result.content == "second"
        assert result.tool_calls == []

    @pytest.mark.asyncio
    async def test_stage_name_ignored(self) -> None:
        llm = EchoLLM()
        assert await llm("generation", _request("x")) == await llm("summary_batch", _request("x"))


# ---------------------------------------------------------------------------
# HttpLLM
# ---------------------------------------------------------------------------

def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _chat_body(content: str = "ok", tool_calls: list | None = None) -> dict:
    message: dict = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}]}


class TestHttpLLM:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="https://api.openai.com/", api_key="", model="gpt-4o")

    @pytest.mark.asyncio
    async def test_happy_path(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body("I shipped it anyway.")))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("generation", _request())
        assert result.content == "I shipped it anyway."

    @pytest.mark.asyncio
    async def test_posts_to_chat_completions(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body()))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("generation", _request())
        assert mock_post.call_args[0][0] == "https://api.openai.com/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_body_carries_system_prompt_model_and_temperature(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body()))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("generation", _request("draft", system_prompt="be terse", temperature=0.9))
        body = mock_post.call_args.kwargs["json"]
        assert body["model"] == "gpt-4o"
        assert body["temperature"] == 0.9
        assert body["messages"] == [
            {"role": "system", "content": "be terse"},
            {"role": "user", "content": "draft"},
        ]
        assert "tools" not in body
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_structured_requests_json_object(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body("{}")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("fingerprint_extraction", _request(structured=True))
        assert mock_post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_tools_sent_and_tool_calls_parsed(self, llm: HttpLLM) -> None:
        calls = [{
            "id": "call-1",
            "type": "function",
            "function": {"name": "get_patterns", "arguments": "{\"limit\": 3}"},
        }]
        mock_post = AsyncMock(return_value=_mock_response(_chat_body(None, calls)))
        spec = ToolSpec(name="get_patterns", description="patterns")
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("orchestrator", _request(tools=[spec]))

        body = mock_post.call_args.kwargs["json"]
        assert body["tool_choice"] == "auto"
        assert body["tools"][0]["function"]["name"] == "get_patterns"
        assert result.content == ""
        assert result.tool_calls[0].name == "get_patterns"
        assert json.loads(result.tool_calls[0].arguments) == {"limit": 3}

    @pytest.mark.asyncio
    async def test_bearer_token_sent_when_api_key_set(self) -> None:
        llm = HttpLLM(provider_url="https://api.openai.com", api_key="secret")
        mock_post = AsyncMock(return_value=_mock_response(_chat_body()))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("generation", _request())
        assert mock_post.call_args.kwargs["headers"].get("Authorization") == "Bearer secret"

    @pytest.mark.asyncio
    async def test_no_auth_header_when_no_api_key(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body()))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("generation", _request())
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_timeout(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(UpstreamTimeoutError):
                await llm("generation", _request())

    @pytest.mark.asyncio
    async def test_429_raises_rate_limit(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=429))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(UpstreamRateLimitError):
                await llm("generation", _request())

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError) as exc_info:
                await llm("generation", _request())
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connect_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Cannot connect"):
                await llm("generation", _request())

    @pytest.mark.asyncio
    async def test_unexpected_format(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"choices": []}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("generation", _request())


# ---------------------------------------------------------------------------
# RetryingLLM
# ---------------------------------------------------------------------------

class FlakyLLM:
    def __init__(self, errors: list[Exception]) -> None:
        self._errors = list(errors)
        self.attempts = 0

    async def __call__(self, stage, request):
        self.attempts += 1
        if self._errors:
            raise self._errors.pop(0)
        return Completion(content="done")


class TestRetryingLLM:
    @pytest.fixture
    def sleeps(self) -> list[float]:
        return []

    def _wrap(self, inner, sleeps, **kwargs) -> RetryingLLM:
        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)
        return RetryingLLM(inner, sleep=fake_sleep, **kwargs)

    @pytest.mark.asyncio
    async def test_retries_transient_errors_with_backoff(self, sleeps) -> None:
        inner = FlakyLLM([UpstreamTimeoutError("t"), UpstreamRateLimitError("r"), LLMError("5xx", 502)])
        llm = self._wrap(inner, sleeps, max_retries=3, initial_delay=1, backoff_multiplier=2, max_delay=10)
        result = await llm("generation", _request())
        assert result.content == "done"
        assert inner.attempts == 4
        assert sleeps == [1, 2, 4]

    @pytest.mark.asyncio
    async def test_delay_capped(self, sleeps) -> None:
        inner = FlakyLLM([UpstreamTimeoutError("t")] * 3)
        llm = self._wrap(inner, sleeps, max_retries=3, initial_delay=4, backoff_multiplier=3, max_delay=10)
        await llm("generation", _request())
        assert sleeps == [4, 10, 10]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sleeps) -> None:
        inner = FlakyLLM([UpstreamTimeoutError("t")] * 5)
        llm = self._wrap(inner, sleeps, max_retries=2)
        with pytest.raises(UpstreamTimeoutError):
            await llm("generation", _request())
        assert inner.attempts == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, sleeps) -> None:
        inner = FlakyLLM([LLMError("bad request", 400)])
        llm = self._wrap(inner, sleeps)
        with pytest.raises(LLMError):
            await llm("generation", _request())
        assert inner.attempts == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_not_retried(self, sleeps) -> None:
        inner = FlakyLLM([ValueError("bug")])
        llm = self._wrap(inner, sleeps)
        with pytest.raises(ValueError):
            await llm("generation", _request())
        assert inner.attempts == 1

    @pytest.mark.asyncio
    async def test_each_retry_logged(self, sleeps, caplog) -> None:
        inner = FlakyLLM([UpstreamTimeoutError("slow"), UpstreamTimeoutError("slow")])
        llm = self._wrap(inner, sleeps, max_retries=3)
        with caplog.at_level("WARNING", logger="voiceforge.llm"):
            await llm("fingerprint_extraction", _request())
        retries = [r.getMessage() for r in caplog.records if "llm retry" in r.getMessage()]
        assert len(retries) == 2
        assert "stage=fingerprint_extraction attempt=1/3 delay=1.0s" in retries[0]


def test_is_retryable():
    assert is_retryable(UpstreamTimeoutError("t"))
    assert is_retryable(UpstreamRateLimitError("r"))
    assert is_retryable(LLMError("x", 500))
    assert not is_retryable(LLMError("x", 401))
    assert not is_retryable(LLMError("x"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_complete_text_wraps_prompt():
    llm = EchoLLM()
    assert await complete_text(llm, "generation", "just this") == "just this"


@pytest.mark.asyncio
async def test_stream_completion_falls_back_to_single_call():
    chunks = [c async for c in stream_completion(EchoLLM(), "orchestrator_stream", _request("whole"))]
    assert chunks == ["whole"]


@pytest.mark.parametrize("raw,expected", [
    ('{"a": 1}', {"a": 1}),
    ('```json\n{"a": 1}\n```', {"a": 1}),
    ("[1, 2]", None),
    ("not json", None),
])
def test_parse_json_object(raw, expected):
    assert parse_json_object(raw) == expected
