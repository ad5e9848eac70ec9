import asyncio
import unittest

from cashflow_assistant.agent_config import AgentConfig, AgentLimits
from cashflow_assistant.assistant import Assistant, ChatRequest, tools_note
from cashflow_assistant.context_cache import ContextCache
from cashflow_assistant.errors import UpstreamAuthError, UpstreamServerError
from cashflow_assistant.session_store import SessionStore
from cashflow_assistant.tool_orchestrator import APOLOGY_ANSWER
from cashflow_assistant.tool_registry import ToolRegistry
from tests.fakes import (
    BreakableStore,
    FakeClock,
    FakeContextSource,
    FakeTool,
    ScriptedCompletionClient,
    text_completion,
    tool_completion,
)


class _SlowContextSource(FakeContextSource):
    async def get_user_data(self, user_id, token):
        await asyncio.sleep(1)
        return await super().get_user_data(user_id, token)


class AssistantTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.store = BreakableStore()
        self.limits = AgentLimits()

    def _assistant(self, *script, tools=(), cache=None, sessions_store=None, system_prompt=""):
        self.completion = ScriptedCompletionClient(*script)
        sessions = SessionStore(
            sessions_store or self.store,
            max_messages=self.limits.history_max_messages,
            ttl_seconds=self.limits.session_ttl_seconds,
            timeout_seconds=self.limits.store_timeout_seconds,
        )
        return Assistant(
            AgentConfig(system_prompt=system_prompt, limits=self.limits),
            completion=self.completion,
            registry=ToolRegistry(list(tools)),
            sessions=sessions,
            cache=cache,
            clock=self.clock,
        )

    def _cache(self, source=None, store=None) -> ContextCache:
        self.source = source or FakeContextSource()
        return ContextCache(store or self.store, self.source, self.limits, clock=self.clock)

    def test_plain_exchange_is_remembered(self) -> None:
        assistant = self._assistant(text_completion("Hello!"), text_completion("Still here."))

        async def scenario():
            first = await assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi"))
            second = await assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="again"))
            return first, second, await assistant.history("s1")

        first, second, history = asyncio.run(scenario())

        self.assertEqual("Hello!", first.answer)
        self.assertFalse(first.memory_used)
        self.assertTrue(second.memory_used)
        self.assertTrue(first.persisted)
        self.assertEqual([], first.degraded)
        self.assertEqual("none", first.context_source)
        self.assertEqual(
            [("user", "hi"), ("assistant", "Hello!"), ("user", "again"), ("assistant", "Still here.")],
            [(m["role"], m["content"]) for m in history],
        )
        second_request = self.completion.calls[1]["messages"]
        self.assertEqual(["system", "user", "assistant", "user"], [m["role"] for m in second_request])
        self.assertIn("Today's date is 2025-03-14.", second_request[0]["content"])

    def test_tool_use_is_noted_in_history(self) -> None:
        assistant = self._assistant(
            tool_completion(("c1", "get_balances", "{}")),
            text_completion("Your balance is 1500."),
            tools=[FakeTool("get_balances", {"balance": 1500})],
        )

        async def scenario():
            reply = await assistant.chat(
                ChatRequest(session_key="s1", user_id="u1", message="balance?", account_id="a1")
            )
            return reply, await assistant.history("s1")

        reply, history = asyncio.run(scenario())

        self.assertEqual(["get_balances (ok)"], reply.tools_used)
        self.assertEqual("Your balance is 1500.\n\n[Tools used: get_balances (ok)]", history[-1]["content"])

    def test_cached_context_is_included(self) -> None:
        assistant = self._assistant(text_completion("ok"), cache=self._cache())
        reply = asyncio.run(
            assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="how am I doing?", account_id="a1"))
        )

        self.assertEqual("cached", reply.context_source)
        self.assertFalse(reply.context_cached)
        messages = self.completion.calls[0]["messages"]
        self.assertIn("Current financial data for account a1", messages[-2]["content"])
        self.assertEqual("how am I doing?", messages[-1]["content"])

    def test_explicit_context_skips_the_cache(self) -> None:
        assistant = self._assistant(text_completion("ok"), cache=self._cache())
        reply = asyncio.run(
            assistant.chat(
                ChatRequest(
                    session_key="s1",
                    user_id="u1",
                    message="what about this?",
                    account_id="a1",
                    context={"balance": 99},
                )
            )
        )

        self.assertEqual("explicit", reply.context_source)
        self.assertEqual(0, self.source.user_calls)
        self.assertIn('"balance":99', self.completion.calls[0]["messages"][-2]["content"])

    def test_no_account_means_no_cache_lookup(self) -> None:
        assistant = self._assistant(text_completion("ok"), cache=self._cache())
        reply = asyncio.run(assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi")))
        self.assertEqual("none", reply.context_source)
        self.assertEqual(0, self.source.user_calls)

    def test_unavailable_context_degrades(self) -> None:
        source = FakeContextSource()
        source.fail_selected = 2
        assistant = self._assistant(text_completion("ok"), cache=self._cache(source))
        reply = asyncio.run(
            assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi", account_id="a1"))
        )
        self.assertEqual("ok", reply.answer)
        self.assertEqual(["context_unavailable"], reply.degraded)
        self.assertEqual("none", reply.context_source)

    def test_slow_context_times_out(self) -> None:
        self.limits = AgentLimits(cache_timeout_seconds=0.05)
        assistant = self._assistant(text_completion("ok"), cache=self._cache(_SlowContextSource()))
        reply = asyncio.run(
            assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi", account_id="a1"))
        )
        self.assertEqual(["context_timeout"], reply.degraded)

    def test_store_outage_degrades_but_answers(self) -> None:
        broken = BreakableStore()
        broken.broken = True
        assistant = self._assistant(
            text_completion("ok"), cache=self._cache(store=broken), sessions_store=broken
        )
        reply = asyncio.run(
            assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi", account_id="a1"))
        )

        self.assertEqual("ok", reply.answer)
        self.assertFalse(reply.persisted)
        self.assertEqual(["context_cache_unavailable", "history_not_saved"], reply.degraded)
        self.assertEqual("cached", reply.context_source)

    def test_upstream_failure_apologises_and_is_recorded(self) -> None:
        assistant = self._assistant(UpstreamServerError("down"))

        async def scenario():
            reply = await assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi"))
            return reply, await assistant.history("s1")

        reply, history = asyncio.run(scenario())
        self.assertEqual(APOLOGY_ANSWER, reply.answer)
        self.assertEqual(["completion_failed"], reply.degraded)
        self.assertEqual(2, len(history))

    def test_auth_failure_propagates(self) -> None:
        assistant = self._assistant(UpstreamAuthError("bad key", status_code=401))
        with self.assertRaises(UpstreamAuthError):
            asyncio.run(assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi")))

    def test_empty_message_is_rejected(self) -> None:
        assistant = self._assistant()
        with self.assertRaises(ValueError):
            asyncio.run(assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="   ")))

    def test_configured_system_prompt_wins_over_default(self) -> None:
        assistant = self._assistant(text_completion("ok"), system_prompt="Be brief.")
        asyncio.run(assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi")))
        self.assertEqual("Be brief.", self.completion.calls[0]["messages"][0]["content"])

        assistant = self._assistant(text_completion("ok"), system_prompt="Be brief.")
        asyncio.run(
            assistant.chat(ChatRequest(session_key="s2", user_id="u1", message="hi", system_prompt="Be verbose."))
        )
        self.assertEqual("Be verbose.", self.completion.calls[0]["messages"][0]["content"])

    def test_analyze_transactions(self) -> None:
        assistant = self._assistant(text_completion("You spend a lot on coffee."))

        async def scenario():
            reply = await assistant.analyze_transactions("s1", [{"name": "Coffee"}, {"name": "Coffee"}])
            return reply, await assistant.history("s1")

        reply, history = asyncio.run(scenario())

        self.assertEqual("You spend a lot on coffee.", reply.answer)
        self.assertEqual(500, self.completion.calls[0]["max_tokens"])
        self.assertIsNone(self.completion.calls[0]["tools"])
        self.assertEqual("Analyze these transactions (2 items).", history[0]["content"])

    def test_clear_history(self) -> None:
        assistant = self._assistant(text_completion("ok"))

        async def scenario():
            await assistant.chat(ChatRequest(session_key="s1", user_id="u1", message="hi"))
            cleared = await assistant.clear_history("s1")
            return cleared, await assistant.history("s1")

        self.assertEqual((True, []), asyncio.run(scenario()))


class ToolsNoteTests(unittest.TestCase):
    def test_note(self) -> None:
        self.assertEqual("", tools_note([]))
        self.assertEqual("[Tools used: a (ok), b (failed)]", tools_note(["a (ok)", "b (failed)"]))


if __name__ == "__main__":
    unittest.main()
