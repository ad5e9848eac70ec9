from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from loguru import logger

from cashflow_assistant.agent_config import AgentLimits
from cashflow_assistant.context_cache import CachedContext
from cashflow_assistant.messages import (
    TRUNCATION_MARKER,
    sanitize_history,
    serialized_size,
    system_message,
    truncate_text,
    user_message,
)


@dataclass(frozen=True)
class NoContext:
    pass


@dataclass(frozen=True)
class ExplicitContext:
    payload: Any


@dataclass(frozen=True)
class CachedContextSource:
    entry: CachedContext


ContextSource = Union[NoContext, ExplicitContext, CachedContextSource]


def resolve_context(explicit: Any = None, cached: CachedContext | None = None) -> ContextSource:
    """Pick the context for one request. Caller-supplied context wins over the cache."""
    if explicit not in (None, "", {}, []):
        return ExplicitContext(explicit)
    if cached is not None:
        return CachedContextSource(cached)
    return NoContext()


def _to_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str, separators=(",", ":"))


def render_context(source: ContextSource, max_chars: int) -> list[dict]:
    if isinstance(source, ExplicitContext):
        body = truncate_text(_to_text(source.payload), max_chars)
        return [user_message(f"Context provided for this conversation:\n{body}")]
    if isinstance(source, CachedContextSource):
        entry = source.entry
        freshness = "freshly loaded" if not entry.cached else f"cached {entry.age_minutes} min ago"
        header = (
            f"Current financial data for account {entry.account_id} "
            f"(as of {entry.payload.get('current_date', 'today')}, {freshness}):"
        )
        body = truncate_text(_to_text(entry.payload), max_chars)
        return [user_message(f"{header}\n{body}")]
    return []


@dataclass
class AssembledPrompt:
    messages: list[dict]
    size_bytes: int
    evicted: int = 0
    context_truncated: bool = False
    over_budget: bool = False
    notes: list[str] = field(default_factory=list)


class ContextAssembler:
    def __init__(self, limits: AgentLimits):
        self._limits = limits

    def assemble(
        self,
        *,
        system_prompt: str,
        history: list[dict],
        user_text: str,
        context: ContextSource | None = None,
    ) -> AssembledPrompt:
        limits = self._limits
        budget = limits.max_request_bytes

        system = system_message(truncate_text(system_prompt, limits.system_content_max_chars))
        turns = sanitize_history([m for m in history if m.get("role") != "system"])
        turns = [self._clip(m) for m in turns]
        context_messages = render_context(context or NoContext(), limits.context_content_max_chars)
        latest = user_message(user_text)

        def build() -> list[dict]:
            return [system, *turns, *context_messages, latest]

        messages = build()
        size = serialized_size(messages)
        original_turns = len(turns)

        attempts = 0
        while size > budget and turns and attempts < limits.max_eviction_attempts:
            attempts += 1
            # Re-sanitize so evicting an assistant tool call also drops its replies.
            turns = sanitize_history(turns[1:])
            messages = build()
            size = serialized_size(messages)

        evicted = original_turns - len(turns)
        if evicted:
            logger.info(f"Evicted {evicted} oldest history message(s) to fit {budget:,} byte budget")

        context_truncated = False
        if size > budget and context_messages:
            context_messages = self._shrink_context(context_messages, size - budget)
            context_truncated = True
            messages = build()
            size = serialized_size(messages)
            logger.warning(f"Context force-truncated to fit request budget (now {size:,} bytes)")

        over_budget = size > budget
        if over_budget:
            logger.warning(f"Request still {size - budget:,} bytes over budget after eviction and truncation")

        return AssembledPrompt(
            messages=messages,
            size_bytes=size,
            evicted=evicted,
            context_truncated=context_truncated,
            over_budget=over_budget,
        )

    def _clip(self, message: dict) -> dict:
        content = message.get("content")
        if not isinstance(content, str):
            return message
        clipped = truncate_text(content, self._limits.turn_content_max_chars)
        if clipped == content:
            return message
        return {**message, "content": clipped}

    def _shrink_context(self, context_messages: list[dict], overflow: int) -> list[dict]:
        marker_cost = len(json.dumps(TRUNCATION_MARKER)) - 2
        shrunk = list(context_messages)
        remaining = overflow
        for index in range(len(shrunk) - 1, -1, -1):
            if remaining <= 0:
                break
            content = shrunk[index].get("content") or ""
            before = serialized_size([shrunk[index]])
            keep = max(0, len(content) - remaining - marker_cost)
            shrunk[index] = {**shrunk[index], "content": content[:keep] + TRUNCATION_MARKER}
            remaining -= before - serialized_size([shrunk[index]])
        return shrunk
