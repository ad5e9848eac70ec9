import unittest
from datetime import UTC, datetime

from cashflow_assistant.agent_config import AgentLimits
from cashflow_assistant.context_assembler import (
    CachedContextSource,
    ContextAssembler,
    ExplicitContext,
    NoContext,
    render_context,
    resolve_context,
)
from cashflow_assistant.context_cache import CachedContext
from cashflow_assistant.messages import TRUNCATION_MARKER, serialized_size, system_message, user_message


def _turns(count: int, width: int = 400) -> list[dict]:
    turns = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        turns.append({"role": role, "content": f"turn {i:02d} " + "x" * width})
    return turns


def _cached(payload: dict, cached: bool = True) -> CachedContext:
    return CachedContext(
        cache_key="cfa:u:1:a:2:context",
        user_id="1",
        account_id="2",
        payload=payload,
        built_at=datetime(2025, 3, 14, tzinfo=UTC),
        cached=cached,
        age_minutes=5,
    )


class ResolveContextTests(unittest.TestCase):
    def test_explicit_wins_over_cached(self) -> None:
        source = resolve_context({"balance": 1}, _cached({"current_date": "2025-03-14"}))
        self.assertEqual(ExplicitContext({"balance": 1}), source)

    def test_cached_when_no_explicit(self) -> None:
        entry = _cached({"current_date": "2025-03-14"})
        self.assertEqual(CachedContextSource(entry), resolve_context("", entry))

    def test_nothing(self) -> None:
        self.assertIsInstance(resolve_context(None, None), NoContext)

    def test_cached_render_mentions_account_and_age(self) -> None:
        messages = render_context(CachedContextSource(_cached({"current_date": "2025-03-14"})), 1000)
        self.assertEqual(1, len(messages))
        self.assertEqual("user", messages[0]["role"])
        self.assertIn("account 2", messages[0]["content"])
        self.assertIn("cached 5 min ago", messages[0]["content"])


class ContextAssemblerTests(unittest.TestCase):
    def test_order_system_history_context_user(self) -> None:
        assembler = ContextAssembler(AgentLimits())
        prompt = assembler.assemble(
            system_prompt="sys",
            history=[{"role": "system", "content": "old system"}, *_turns(2, width=5)],
            user_text="latest",
            context=ExplicitContext({"balance": 10}),
        )
        roles = [m["role"] for m in prompt.messages]
        self.assertEqual(["system", "user", "assistant", "user", "user"], roles)
        self.assertEqual("sys", prompt.messages[0]["content"])
        self.assertIn('"balance":10', prompt.messages[3]["content"])
        self.assertEqual("latest", prompt.messages[-1]["content"])
        self.assertFalse(prompt.over_budget)
        self.assertEqual(serialized_size(prompt.messages), prompt.size_bytes)

    def test_history_content_is_clipped_to_turn_ceiling(self) -> None:
        assembler = ContextAssembler(AgentLimits(turn_content_max_chars=50))
        prompt = assembler.assemble(system_prompt="sys", history=_turns(1, width=500), user_text="q")
        self.assertEqual(50, len(prompt.messages[1]["content"]))
        self.assertTrue(prompt.messages[1]["content"].endswith(TRUNCATION_MARKER))

    def test_twelve_turns_over_budget_evicts_three_oldest(self) -> None:
        history = _turns(12)
        context = ExplicitContext({"available": "y" * 300})
        base_limits = AgentLimits()
        context_messages = render_context(context, base_limits.context_content_max_chars)
        expected = [system_message("sys"), *history[3:], *context_messages, user_message("what now?")]
        full = [system_message("sys"), *history, *context_messages, user_message("what now?")]
        budget = serialized_size(expected)
        self.assertGreater(serialized_size(full), budget)

        assembler = ContextAssembler(AgentLimits(max_request_bytes=budget))
        prompt = assembler.assemble(system_prompt="sys", history=history, user_text="what now?", context=context)

        self.assertEqual(3, prompt.evicted)
        self.assertEqual(expected, prompt.messages)
        self.assertLessEqual(prompt.size_bytes, budget)
        self.assertFalse(prompt.context_truncated)
        self.assertFalse(prompt.over_budget)

    def test_evicting_tool_call_also_drops_its_reply(self) -> None:
        call = {"id": "c1", "type": "function", "function": {"name": "get_balances", "arguments": "{}"}}
        history = [
            {"role": "user", "content": "u0"},
            {"role": "assistant", "content": None, "tool_calls": [call]},
            {"role": "tool", "tool_call_id": "c1", "content": "{}"},
            {"role": "assistant", "content": "a0"},
            {"role": "user", "content": "u1"},
            {"role": "assistant", "content": "a1"},
        ]
        expected = [system_message("sys"), *history[3:], user_message("q")]
        assembler = ContextAssembler(AgentLimits(max_request_bytes=serialized_size(expected)))
        prompt = assembler.assemble(system_prompt="sys", history=history, user_text="q")

        self.assertEqual(expected, prompt.messages)
        self.assertEqual(3, prompt.evicted)

    def test_context_is_force_truncated_when_history_is_gone(self) -> None:
        context = ExplicitContext("z" * 5000)
        without_context = [system_message("sys"), user_message("q")]
        budget = serialized_size(without_context) + 1000
        assembler = ContextAssembler(AgentLimits(max_request_bytes=budget))
        prompt = assembler.assemble(system_prompt="sys", history=_turns(4), user_text="q", context=context)

        self.assertEqual(4, prompt.evicted)
        self.assertTrue(prompt.context_truncated)
        self.assertFalse(prompt.over_budget)
        self.assertLessEqual(prompt.size_bytes, budget)
        self.assertTrue(prompt.messages[1]["content"].endswith(TRUNCATION_MARKER))

    def test_impossible_budget_keeps_system_and_latest(self) -> None:
        assembler = ContextAssembler(AgentLimits(max_request_bytes=10, max_eviction_attempts=2))
        prompt = assembler.assemble(
            system_prompt="sys",
            history=_turns(12),
            user_text="latest",
            context=ExplicitContext("ctx"),
        )
        self.assertEqual(2, prompt.evicted)
        self.assertTrue(prompt.over_budget)
        self.assertEqual("system", prompt.messages[0]["role"])
        self.assertEqual("latest", prompt.messages[-1]["content"])


if __name__ == "__main__":
    unittest.main()
