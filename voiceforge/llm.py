"""LLM client: HTTP connection to a chat-completion backend.

Every component that talks to a model receives an LLM callable matching:

    async def __call__(self, stage: str, request: CompletionRequest) -> Completion: ...

`stage` names the calling step ("generation", "similarity_judge",
"orchestrator", ...). Implementations use it for logging; tests use it to
queue canned responses per step.

Implementations:

    HttpLLM      OpenAI-compatible /v1/chat/completions client with tool
                   calling, JSON mode and SSE streaming.
    RetryingLLM  wraps any LLM with exponential backoff on timeouts,
                   rate limits and 5xx responses.
    EchoLLM      returns the last user message. Smoke-tests wiring without
                   a running model.

Tests use StubLLM (root conftest.py) instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"  # raw JSON as produced by the model


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


class ToolSpec(BaseModel):
    """A function the model may call, described by a JSON schema."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class CompletionRequest(BaseModel):
    system_prompt: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    tools: list[ToolSpec] = Field(default_factory=list)
    temperature: float = 0.7
    structured: bool = False  # ask the backend for a JSON object
    max_tokens: int | None = None


class Completion(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamTimeoutError(LLMError):
    """The backend did not answer within the configured timeout."""


class UpstreamRateLimitError(LLMError):
    """The backend answered 429."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=429)


def is_retryable(error: LLMError) -> bool:
    """Timeouts, rate limits and 5xx responses are transient; other 4xx are not."""
    if isinstance(error, (UpstreamTimeoutError, UpstreamRateLimitError)):
        return True
    return error.status_code is not None and error.status_code >= 500


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, request: CompletionRequest) -> Completion: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async HTTP client for OpenAI-compatible chat-completion backends.

    POST {provider_url}/v1/chat/completions
      {"model", "messages", "temperature", "tools"?, "tool_choice"?, "response_format"?}
    Response: {"choices": [{"message": {"content": ..., "tool_calls": [...]}}]}

    Args:
        provider_url: Base URL of the backend, e.g. "https://api.openai.com".
        api_key:      Bearer token, or empty string if not required.
        model:        Model identifier.
        timeout:      HTTP timeout in seconds. Defaults to 60.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @property
    def _url(self) -> str:
        return f"{self._base_url}/v1/chat/completions"

    def _build_body(self, request: CompletionRequest, stream: bool = False) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        for msg in request.messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {"id": c.id, "type": "function",
                     "function": {"name": c.name, "arguments": c.arguments}}
                    for c in msg.tool_calls
                ]
            if msg.tool_call_id:
                entry["tool_call_id"] = msg.tool_call_id
            if msg.name:
                entry["name"] = msg.name
            messages.append(entry)

        body: dict[str, Any] = {
            "messages": messages,
            "temperature": request.temperature,
        }
        if self._model:
            body["model"] = self._model
        if request.max_tokens:
            body["max_tokens"] = request.max_tokens
        if request.tools:
            body["tools"] = [
                {"type": "function",
                 "function": {"name": t.name, "description": t.description, "parameters": t.parameters}}
                for t in request.tools
            ]
            body["tool_choice"] = "auto"
        if request.structured:
            body["response_format"] = {"type": "json_object"}
        if stream:
            body["stream"] = True
        return body

    def _parse_response(self, data: dict) -> Completion:
        choices = data.get("choices")
        if not choices or "message" not in choices[0]:
            raise LLMError("Unexpected response format from chat-completion backend")
        message = choices[0]["message"]
        calls = [
            ToolCall(
                id=c.get("id", ""),
                name=c["function"]["name"],
                arguments=c["function"].get("arguments") or "{}",
            )
            for c in message.get("tool_calls") or []
        ]
        return Completion(content=message.get("content") or "", tool_calls=calls)

    def _translate(self, e: httpx.HTTPError) -> LLMError:
        if isinstance(e, httpx.TimeoutException):
            return UpstreamTimeoutError(f"LLM backend timed out after {self._timeout}s")
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            if status == 429:
                return UpstreamRateLimitError("LLM backend rate limit exceeded")
            return LLMError(f"LLM backend returned HTTP {status}", status_code=status)
        if isinstance(e, httpx.ConnectError):
            return LLMError(f"Cannot connect to LLM backend at {self._base_url}")
        return LLMError(f"LLM request failed: {e}")

    async def __call__(self, stage: str, request: CompletionRequest) -> Completion:
        body = self._build_body(request)
        logger.debug(
            "llm call stage=%s messages=%d tools=%d", stage, len(body["messages"]), len(request.tools),
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._translate(e) from e

        completion = self._parse_response(resp.json())
        logger.debug(
            "llm response stage=%s len=%d tool_calls=%d",
            stage, len(completion.content), len(completion.tool_calls),
        )
        return completion

    async def stream(self, stage: str, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-events completion."""
        body = self._build_body(request, stream=True)
        logger.debug("llm stream stage=%s messages=%d", stage, len(body["messages"]))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", self._url, json=body, headers=self._headers()) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if payload == "[DONE]":
                            break
                        try:
                            chunk = json.loads(payload)
                        except json.JSONDecodeError:
                            logger.warning("Skipping malformed stream chunk stage=%s", stage)
                            continue
                        choices = chunk.get("choices") or [{}]
                        delta = choices[0].get("delta", {}).get("content")
                        if delta:
                            yield delta
        except httpx.HTTPError as e:
            raise self._translate(e) from e


# ---------------------------------------------------------------------------
# RetryingLLM: exponential backoff around any LLM
# ---------------------------------------------------------------------------

class RetryingLLM:
    """Retries transient upstream failures with exponential backoff.

    Delay starts at initial_delay, multiplies by backoff_multiplier after each
    attempt and is capped at max_delay. Non-retryable errors propagate at once.
    """

    def __init__(
        self,
        inner: LLM,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._inner = inner
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._multiplier = backoff_multiplier
        self._sleep = sleep

    def _retrying(self, stage: str) -> AsyncRetrying:
        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "llm retry stage=%s attempt=%d/%d delay=%.1fs error=%s",
                stage, state.attempt_number, self._max_retries,
                state.next_action.sleep if state.next_action else 0.0,
                state.outcome.exception() if state.outcome else None,
            )

        return AsyncRetrying(
            reraise=True,
            sleep=self._sleep,
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(
                multiplier=self._initial_delay,
                exp_base=self._multiplier,
                max=self._max_delay,
            ),
            retry=retry_if_exception(lambda e: isinstance(e, LLMError) and is_retryable(e)),
            before_sleep=log_retry,
        )

    async def __call__(self, stage: str, request: CompletionRequest) -> Completion:
        async for attempt in self._retrying(stage):
            with attempt:
                return await self._inner(stage, request)
        raise AssertionError("unreachable: tenacity reraises the last error")

    async def stream(self, stage: str, request: CompletionRequest) -> AsyncIterator[str]:
        async for chunk in stream_completion(self._inner, stage, request):
            yield chunk


# ---------------------------------------------------------------------------
# EchoLLM: returns the last user message; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the last user message as-is. No network calls.

    Lets you verify that the orchestration wiring (history injection,
    storage writes, summary scheduling) works end-to-end without a running
    model. The output won't be valid JSON for structured stages; use
    StubLLM in tests when you need controlled responses.
    """

    async def __call__(self, stage: str, request: CompletionRequest) -> Completion:
        logger.debug("EchoLLM stage=%s messages=%d", stage, len(request.messages))
        for msg in reversed(request.messages):
            if msg.role == "user":
                return Completion(content=msg.content)
        return Completion(content="")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def stream_completion(llm: LLM, stage: str, request: CompletionRequest) -> AsyncIterator[str]:
    """Stream from llm when it supports it, otherwise yield one full completion."""
    stream = getattr(llm, "stream", None)
    if stream is None:
        completion = await llm(stage, request)
        if completion.content:
            yield completion.content
        return
    async for chunk in stream(stage, request):
        yield chunk


async def complete_text(
    llm: LLM,
    stage: str,
    prompt: str,
    *,
    system_prompt: str = "",
    temperature: float = 0.7,
    structured: bool = False,
) -> str:
    """Single-prompt convenience wrapper returning just the text."""
    request = CompletionRequest(
        system_prompt=system_prompt,
        messages=[ChatMessage(role="user", content=prompt)],
        temperature=temperature,
        structured=structured,
    )
    completion = await llm(stage, request)
    return completion.content


def parse_json_object(text: str) -> dict | None:
    """Parse a JSON object from model output, stripping markdown fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError as e:
        logger.warning("Model output is not valid JSON: %s", e)
        return None


def build_llm(settings) -> RetryingLLM:
    """Construct the production client stack from LLMSettings."""
    http = HttpLLM(
        provider_url=settings.provider_url,
        api_key=settings.api_key,
        model=settings.model,
        timeout=settings.timeout,
    )
    return RetryingLLM(
        http,
        max_retries=settings.max_retries,
        initial_delay=settings.initial_delay,
        max_delay=settings.max_delay,
        backoff_multiplier=settings.backoff_multiplier,
    )
