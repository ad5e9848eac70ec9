from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from loguru import logger

from cashflow_assistant.agent_config import AgentConfig
from cashflow_assistant.completion_client import CompletionClient
from cashflow_assistant.context_assembler import ContextAssembler, ExplicitContext, NoContext, resolve_context
from cashflow_assistant.context_cache import CachedContext, ContextCache
from cashflow_assistant.errors import UpstreamAuthError, UpstreamError
from cashflow_assistant.messages import assistant_message, system_message, truncate_text, user_message
from cashflow_assistant.session_store import SessionStore
from cashflow_assistant.system_prompt import ANALYZE_TRANSACTIONS_PROMPT, build_system_prompt
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tool_orchestrator import APOLOGY_ANSWER, ToolOrchestrator
from cashflow_assistant.tool_registry import ToolRegistry

ANALYZE_MAX_TOKENS = 500


@dataclass
class ChatRequest:
    session_key: str
    user_id: str
    message: str
    account_id: str | None = None
    auth_token: str | None = None
    context: Any = None
    location: dict | None = None
    system_prompt: str | None = None


@dataclass
class ChatReply:
    answer: str
    session_key: str
    tools_used: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    memory_used: bool = False
    context_source: str = "none"
    context_cached: bool = False
    persisted: bool = False
    request_bytes: int = 0
    evicted: int = 0


def tools_note(labels: list[str]) -> str:
    return f"[Tools used: {', '.join(labels)}]" if labels else ""


class Assistant:
    def __init__(
        self,
        config: AgentConfig,
        *,
        completion: CompletionClient,
        registry: ToolRegistry,
        sessions: SessionStore,
        cache: ContextCache | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._config = config
        self._limits = config.limits
        self._completion = completion
        self._registry = registry
        self._sessions = sessions
        self._cache = cache
        self._clock = clock
        self._assembler = ContextAssembler(config.limits)
        self._orchestrator = ToolOrchestrator(completion=completion, registry=registry, limits=config.limits)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def cache(self) -> ContextCache | None:
        return self._cache

    async def chat(self, request: ChatRequest) -> ChatReply:
        """Run one exchange. Only UpstreamAuthError (and invalid input) escape."""
        if not request.message or not request.message.strip():
            raise ValueError("message is required")

        degraded: list[str] = []
        history = await self._sessions.load(request.session_key)

        cached = await self._cached_context(request, degraded)
        source = resolve_context(request.context, cached)

        prompt = self._assembler.assemble(
            system_prompt=request.system_prompt or self._config.system_prompt or build_system_prompt(
                self._current_date(cached)
            ),
            history=history,
            user_text=request.message,
            context=source,
        )
        if prompt.context_truncated:
            degraded.append("context_truncated")
        if prompt.over_budget:
            degraded.append("over_budget")

        outcome = await self._orchestrator.run(
            prompt.messages,
            ToolCallContext(
                user_id=request.user_id,
                account_id=request.account_id,
                auth_token=request.auth_token,
            ),
        )
        degraded.extend(outcome.degraded)

        note = tools_note(outcome.tools_used)
        stored_answer = f"{outcome.answer}\n\n{note}" if note else outcome.answer
        persisted = await self._sessions.append(
            request.session_key,
            [user_message(request.message), assistant_message(stored_answer)],
        )
        if not persisted:
            degraded.append("history_not_saved")

        if degraded:
            logger.warning(f"Session {request.session_key!r} degraded: {', '.join(degraded)}")
        return ChatReply(
            answer=outcome.answer,
            session_key=request.session_key,
            tools_used=outcome.tools_used,
            degraded=degraded,
            memory_used=bool(history),
            context_source=_source_name(source),
            context_cached=cached is not None and cached.cached,
            persisted=persisted,
            request_bytes=prompt.size_bytes,
            evicted=prompt.evicted,
        )

    async def analyze_transactions(self, session_key: str, transactions: list[dict]) -> ChatReply:
        """Summarize a caller-supplied transaction list and record it in the session history."""
        body = json.dumps(transactions, ensure_ascii=False, default=str)
        messages = [
            system_message(ANALYZE_TRANSACTIONS_PROMPT),
            user_message(
                "Here are the transactions:\n"
                + truncate_text(body, self._limits.context_content_max_chars)
            ),
        ]

        degraded: list[str] = []
        try:
            completion = await self._completion.complete(messages, max_tokens=ANALYZE_MAX_TOKENS)
            insights = completion.content
            if completion.malformed or not insights.strip():
                degraded.append("completion_malformed")
                insights = "I couldn't produce insights for these transactions. Please try again."
        except UpstreamAuthError:
            raise
        except UpstreamError as ex:
            logger.error(f"Transaction analysis failed: {type(ex).__name__}: {ex}")
            degraded.append("completion_failed")
            insights = APOLOGY_ANSWER

        persisted = await self._sessions.append(
            session_key,
            [
                user_message(f"Analyze these transactions ({len(transactions)} items)."),
                assistant_message(insights),
            ],
        )
        if not persisted:
            degraded.append("history_not_saved")
        return ChatReply(answer=insights, session_key=session_key, degraded=degraded, persisted=persisted)

    async def history(self, session_key: str) -> list[dict]:
        return await self._sessions.load(session_key)

    async def clear_history(self, session_key: str) -> bool:
        cleared = await self._sessions.clear(session_key)
        logger.info(f"Cleared history for session {session_key!r}: {cleared}")
        return cleared

    async def _cached_context(self, request: ChatRequest, degraded: list[str]) -> CachedContext | None:
        if not isinstance(resolve_context(request.context), NoContext):
            return None
        if self._cache is None or not request.account_id:
            return None
        try:
            cached = await asyncio.wait_for(
                self._cache.get(request.user_id, request.account_id, request.auth_token, request.location),
                self._limits.cache_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(f"Context cache timed out for user {request.user_id} account {request.account_id}")
            degraded.append("context_timeout")
            return None
        if cached is None:
            degraded.append("context_unavailable")
        elif not cached.persisted:
            degraded.append("context_cache_unavailable")
        return cached

    def _current_date(self, cached: CachedContext | None) -> str:
        if cached is not None and cached.payload.get("current_date"):
            return str(cached.payload["current_date"])
        return self._clock().date().isoformat()


def _source_name(source: Any) -> str:
    if isinstance(source, ExplicitContext):
        return "explicit"
    if isinstance(source, NoContext):
        return "none"
    return "cached"
