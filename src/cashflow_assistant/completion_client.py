from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import openai
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from cashflow_assistant.agent_config import AgentLimits
from cashflow_assistant.app_config import RuntimeEnv
from cashflow_assistant.errors import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamRequestError,
    UpstreamServerError,
)
from cashflow_assistant.messages import ToolCallRequest, assistant_message


@dataclass
class Completion:
    content: str
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None
    malformed: bool = False

    def to_message(self) -> dict:
        return assistant_message(self.content or None, self.tool_calls)


def create_client(provider_name: str, env: RuntimeEnv, limits: AgentLimits) -> openai.AsyncOpenAI:
    """SDK client with its own retries disabled; CompletionClient owns the retry policy."""
    if provider_name == "azure":
        return openai.AsyncAzureOpenAI(
            api_key=env.provider_api_key,
            azure_endpoint=env.azure_endpoint or "",
            azure_deployment=env.azure_deployment,
            api_version=env.azure_api_version or "2024-06-01",
            max_retries=0,
            timeout=limits.request_timeout_seconds,
        )
    return openai.AsyncOpenAI(
        api_key=env.provider_api_key,
        base_url=env.openai_base_url,
        max_retries=0,
        timeout=limits.request_timeout_seconds,
    )


def _retry_after_seconds(headers: Any) -> float | None:
    if headers is None:
        return None
    millis = headers.get("retry-after-ms")
    if millis:
        try:
            return max(0.0, float(millis) / 1000)
        except ValueError:
            pass
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def classify_status_error(ex: openai.APIStatusError) -> UpstreamError:
    status = ex.status_code
    if status == 429:
        return UpstreamRateLimited(
            f"rate limited: {ex.message}",
            retry_after=_retry_after_seconds(ex.response.headers),
        )
    if status in (401, 403):
        return UpstreamAuthError(f"authentication rejected ({status}): {ex.message}", status_code=status)
    if status >= 500:
        return UpstreamServerError(f"server error ({status}): {ex.message}", status_code=status)
    return UpstreamRequestError(f"request rejected ({status}): {ex.message}", status_code=status)


class CompletionClient:
    def __init__(
        self,
        client: Any,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        limits: AgentLimits,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._limits = limits
        self._backoff = wait_exponential(
            multiplier=limits.retry_base_delay_seconds,
            max=limits.retry_max_delay_seconds,
        )
        self._sleep = sleep

    async def complete(
        self,
        messages: list[dict],
        *,
        tools: list[dict] | None = None,
        tool_choice: str = "auto",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """One chat completion, retried on rate limits and transient failures.

        Raises UpstreamRateLimited / UpstreamServerError once retries are
        exhausted, UpstreamAuthError and UpstreamRequestError immediately.
        """
        kwargs: dict = dict(
            model=self._model,
            messages=messages,
            max_tokens=max_tokens if max_tokens is not None else self._max_tokens,
            temperature=temperature if temperature is not None else self._temperature,
        )
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((UpstreamRateLimited, UpstreamServerError)),
            wait=self._wait,
            stop=stop_after_attempt(self._limits.max_retries + 1),
            before_sleep=self._on_retry,
            sleep=self._sleep,
            reraise=True,
        )
        logger.debug(
            f"Completion request: model={self._model}, messages={len(messages)}, "
            f"tools={len(tools or [])}, tool_choice={tool_choice if tools else 'n/a'}"
        )
        response = await retrying(self._attempt, kwargs)
        return self._parse(response)

    async def _attempt(self, kwargs: dict) -> Any:
        try:
            return await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                self._limits.request_timeout_seconds,
            )
        except TimeoutError as ex:
            raise UpstreamServerError(
                f"completion timed out after {self._limits.request_timeout_seconds}s"
            ) from ex
        except openai.APIStatusError as ex:
            raise classify_status_error(ex) from ex
        except openai.APIConnectionError as ex:
            raise UpstreamServerError(f"{type(ex).__name__}: {ex}") from ex

    def _wait(self, retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, UpstreamRateLimited):
            hint = exc.retry_after if exc.retry_after is not None else self._limits.default_retry_after_seconds
            return min(hint, self._limits.retry_max_delay_seconds)
        return self._backoff(retry_state)

    def _on_retry(self, retry_state) -> None:
        attempt = retry_state.attempt_number
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = type(exc).__name__ if exc else "Unknown"
        logger.warning(
            f"{reason}. Retrying in {wait:.1f}s (attempt {attempt}/{self._limits.max_retries + 1})..."
        )

    def _parse(self, response: Any) -> Completion:
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        if message is None:
            logger.warning("Completion response carried no usable choice")
            return Completion(content="", malformed=True)

        finish_reason = getattr(choices[0], "finish_reason", None)
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Completion response: finish_reason={finish_reason}, "
                f"prompt_tokens={usage.prompt_tokens}, completion_tokens={usage.completion_tokens}"
            )
        return Completion(
            content=getattr(message, "content", None) or "",
            tool_calls=[ToolCallRequest.from_openai(tc) for tc in getattr(message, "tool_calls", None) or []],
            finish_reason=finish_reason,
        )
