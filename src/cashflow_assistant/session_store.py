from __future__ import annotations

import asyncio
import json
from urllib.parse import quote

from loguru import logger

from cashflow_assistant.errors import StoreUnavailable
from cashflow_assistant.kv_store import KeyValueStore
from cashflow_assistant.messages import sanitize_history


class SessionStore:
    """Conversation history keyed by session, bounded by count and TTL.

    Appends are a single atomic push-and-trim on the backing list, so two
    exchanges finishing concurrently on the same session both survive; their
    user/assistant pairs may interleave but neither overwrites the other.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_messages: int,
        ttl_seconds: int,
        timeout_seconds: float,
        key_prefix: str = "cfa",
    ):
        self._store = store
        self._max_messages = max_messages
        self._ttl_seconds = ttl_seconds
        self._timeout_seconds = timeout_seconds
        self._key_prefix = key_prefix

    def key_for(self, session_key: str) -> str:
        return f"{self._key_prefix}:session:{quote(session_key, safe='')}"

    async def load(self, session_key: str) -> list[dict]:
        try:
            raw_items = await asyncio.wait_for(
                self._store.read_list(self.key_for(session_key)),
                self._timeout_seconds,
            )
        except (StoreUnavailable, TimeoutError) as ex:
            logger.warning(f"Session store unavailable for {session_key!r}, continuing without history: {ex!r}")
            return []

        messages: list[dict] = []
        for raw in raw_items:
            try:
                item = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Skipping undecodable history entry in session {session_key!r}")
                continue
            if isinstance(item, dict):
                messages.append(item)

        sanitized = sanitize_history(messages)
        dropped = len(messages) - len(sanitized)
        if dropped:
            logger.info(f"Dropped {dropped} invalid message(s) from session {session_key!r} history")
        return sanitized

    async def append(self, session_key: str, new_messages: list[dict]) -> bool:
        if not new_messages:
            return True
        payload = [json.dumps(m, ensure_ascii=False) for m in new_messages]
        try:
            await asyncio.wait_for(
                self._store.append_list(
                    self.key_for(session_key),
                    payload,
                    max_len=self._max_messages,
                    ttl_seconds=self._ttl_seconds,
                ),
                self._timeout_seconds,
            )
        except (StoreUnavailable, TimeoutError) as ex:
            logger.warning(f"Failed to persist {len(new_messages)} message(s) for session {session_key!r}: {ex!r}")
            return False
        return True

    async def clear(self, session_key: str) -> bool:
        try:
            removed = await asyncio.wait_for(
                self._store.delete(self.key_for(session_key)),
                self._timeout_seconds,
            )
        except (StoreUnavailable, TimeoutError) as ex:
            logger.warning(f"Failed to clear session {session_key!r}: {ex!r}")
            return False
        return removed > 0
