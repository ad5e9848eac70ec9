"""Chat message model shared by the session store, assembler and orchestrator.

Messages are plain dicts in OpenAI chat format so they can be persisted and
transmitted without conversion::

    {"role": "assistant", "content": None, "tool_calls": [{"id": ..., "type": "function",
     "function": {"name": ..., "arguments": "{...}"}}]}
    {"role": "tool", "tool_call_id": ..., "content": "..."}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

VALID_ROLES = frozenset({"system", "user", "assistant", "tool"})

TRUNCATION_MARKER = "\n[...truncated]"


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments_json: str

    @classmethod
    def from_openai(cls, raw: Any) -> ToolCallRequest:
        """Accepts either an SDK object or a plain dict."""
        if isinstance(raw, dict):
            function = raw.get("function") or {}
            return cls(
                id=str(raw.get("id", "")),
                name=str(function.get("name", "")),
                arguments_json=function.get("arguments") or "{}",
            )
        function = getattr(raw, "function", None)
        return cls(
            id=str(getattr(raw, "id", "") or ""),
            name=str(getattr(function, "name", "") or ""),
            arguments_json=getattr(function, "arguments", None) or "{}",
        )

    def to_openai(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json},
        }


@dataclass
class ToolResult:
    tool_call_id: str
    name: str
    success: bool
    payload: Any = None
    error_message: str | None = None
    serialized_size: int = 0
    truncated: bool = False

    def summary_line(self) -> str:
        if not self.success:
            return f"- {self.name} failed: {self.error_message}"
        body = json.dumps(self.payload, ensure_ascii=False, default=str)
        note = " (truncated)" if self.truncated else ""
        return f"- {self.name} succeeded{note}: {body}"

    def outcome_label(self) -> str:
        return f"{self.name} ({'ok' if self.success else 'failed'})"


def system_message(content: str) -> dict:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict:
    return {"role": "user", "content": content}


def assistant_message(content: str | None, tool_calls: list[ToolCallRequest] | None = None) -> dict:
    message: dict = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [tc.to_openai() for tc in tool_calls]
    return message


def _call_ids(message: dict) -> list[str]:
    ids = []
    for call in message.get("tool_calls") or []:
        if isinstance(call, dict) and call.get("id"):
            ids.append(str(call["id"]))
    return ids


def sanitize_history(messages: list[dict]) -> list[dict]:
    """Drop turns the completion service would reject.

    - messages with an unknown role
    - tool messages whose tool_call_id matches no tool_calls entry of an
      earlier assistant message (orphans)
    - tool_calls entries that never received a tool reply; an assistant
      message left with neither content nor calls is dropped

    Applying it twice yields the same sequence as applying it once.
    """
    requested: set[str] = set()
    answered: set[str] = set()
    for msg in messages:
        role = msg.get("role")
        if role == "assistant":
            requested.update(_call_ids(msg))
        elif role == "tool" and msg.get("tool_call_id") in requested:
            answered.add(str(msg["tool_call_id"]))

    result: list[dict] = []
    kept_requests: set[str] = set()
    for msg in messages:
        role = msg.get("role")
        if role not in VALID_ROLES:
            continue
        if role == "tool":
            call_id = msg.get("tool_call_id")
            if call_id not in kept_requests or call_id not in answered:
                continue
            result.append(msg)
            continue
        if role == "assistant" and "tool_calls" in msg:
            kept = [c for c in msg.get("tool_calls") or [] if isinstance(c, dict) and c.get("id") in answered]
            if len(kept) != len(msg.get("tool_calls") or []):
                msg = {k: v for k, v in msg.items() if k != "tool_calls"}
                if kept:
                    msg["tool_calls"] = kept
            if not msg.get("content") and not msg.get("tool_calls"):
                continue
            kept_requests.update(_call_ids(msg))
        result.append(msg)
    return result


def serialized_size(messages: list[dict]) -> int:
    return len(json.dumps(messages, ensure_ascii=False).encode("utf-8"))


def truncate_text(text: str | None, limit: int, marker: str = TRUNCATION_MARKER) -> str | None:
    if text is None or limit <= 0 or len(text) <= limit:
        return text
    keep = max(0, limit - len(marker))
    return text[:keep] + marker
