from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from cashflow_assistant.agent_config import AgentLimits
from cashflow_assistant.completion_client import Completion, CompletionClient
from cashflow_assistant.errors import UpstreamAuthError, UpstreamError
from cashflow_assistant.messages import ToolCallRequest, ToolResult, user_message
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tool_registry import ToolRegistry

APOLOGY_ANSWER = (
    "I'm sorry, I couldn't reach the assistant service just now. "
    "Please try again in a moment."
)
MALFORMED_ANSWER = (
    "I'm sorry, I received an incomplete response and couldn't answer that. "
    "Please try asking again."
)


class TurnState(Enum):
    AWAITING_COMPLETION = "awaiting_completion"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_FINAL_COMPLETION = "awaiting_final_completion"
    DONE = "done"


@dataclass
class TurnOutcome:
    answer: str
    tool_results: list[ToolResult] = field(default_factory=list)
    states: list[TurnState] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)

    @property
    def tools_used(self) -> list[str]:
        return [r.outcome_label() for r in self.tool_results]


def results_turn(results: list[ToolResult]) -> dict:
    lines = "\n".join(r.summary_line() for r in results)
    return user_message(
        "Here are the results of the tools you requested:\n"
        f"{lines}\n\n"
        "Using these results, answer my previous message. Mention any tool that failed."
    )


def synthesized_answer(results: list[ToolResult]) -> str:
    lines = "\n".join(r.summary_line() for r in results)
    return (
        "I gathered the following information but couldn't put together a full answer right now:\n"
        f"{lines}"
    )


class ToolOrchestrator:
    """Runs one turn: completion, at most one round of tool calls, final completion."""

    def __init__(self, *, completion: CompletionClient, registry: ToolRegistry, limits: AgentLimits):
        self._completion = completion
        self._registry = registry
        self._limits = limits

    async def run(self, messages: list[dict], context: ToolCallContext) -> TurnOutcome:
        outcome = TurnOutcome(answer="")
        outcome.states.append(TurnState.AWAITING_COMPLETION)
        schemas = self._registry.schemas()

        first = await self._complete(messages, schemas, "auto", outcome, failure_flag="completion_failed")
        if first is None:
            return self._finish(outcome, APOLOGY_ANSWER)
        if first.malformed:
            outcome.degraded.append("completion_malformed")
            return self._finish(outcome, MALFORMED_ANSWER)
        if not first.tool_calls:
            return self._finish(outcome, first.content)

        outcome.states.append(TurnState.EXECUTING_TOOLS)
        tool_names = ", ".join(c.name for c in first.tool_calls)
        logger.info(f"Executing {len(first.tool_calls)} tool call(s): {tool_names}")
        outcome.tool_results = await self.execute_tools(first.tool_calls, context)
        if any(not r.success for r in outcome.tool_results):
            outcome.degraded.append("tool_errors")

        outcome.states.append(TurnState.AWAITING_FINAL_COMPLETION)
        final_messages = [*messages, results_turn(outcome.tool_results)]
        final = await self._complete(
            final_messages, schemas, "none", outcome, failure_flag="final_completion_failed"
        )
        if final is None:
            return self._finish(outcome, synthesized_answer(outcome.tool_results))
        if final.malformed or not final.content.strip():
            outcome.degraded.append("final_completion_empty")
            return self._finish(outcome, synthesized_answer(outcome.tool_results))
        return self._finish(outcome, final.content)

    async def _complete(
        self,
        messages: list[dict],
        schemas: list[dict],
        tool_choice: str,
        outcome: TurnOutcome,
        *,
        failure_flag: str,
    ) -> Completion | None:
        try:
            return await self._completion.complete(messages, tools=schemas or None, tool_choice=tool_choice)
        except UpstreamAuthError:
            raise
        except UpstreamError as ex:
            logger.error(f"Completion failed ({failure_flag}): {type(ex).__name__}: {ex}")
            outcome.degraded.append(failure_flag)
            return None

    @staticmethod
    def _finish(outcome: TurnOutcome, answer: str) -> TurnOutcome:
        outcome.answer = answer
        outcome.states.append(TurnState.DONE)
        return outcome

    async def execute_tools(self, calls: list[ToolCallRequest], context: ToolCallContext) -> list[ToolResult]:
        # Started tools run to completion even if the caller is cancelled.
        batch = asyncio.gather(*(self._run_one(c, context) for c in calls))
        return list(await asyncio.shield(batch))

    async def _run_one(self, call: ToolCallRequest, context: ToolCallContext) -> ToolResult:
        tool = self._registry.get(call.name)
        if tool is None:
            return self._error(call, f'unknown tool "{call.name}"')

        try:
            arguments = json.loads(call.arguments_json or "{}")
        except json.JSONDecodeError as ex:
            return self._error(call, f"invalid arguments JSON: {ex.msg}")
        if not isinstance(arguments, dict):
            return self._error(call, "arguments must be a JSON object")

        timeout = self._limits.tool_timeout_seconds
        try:
            payload = await asyncio.wait_for(tool.execute(arguments, context), timeout)
        except TimeoutError:
            return self._error(call, f"timed out after {timeout:g}s")
        except Exception as ex:
            return self._error(call, str(ex) or type(ex).__name__)

        if tool.is_mutating:
            logger.info(f"Mutating tool {call.name} completed for user {context.user_id}")
        return self._bounded(call, payload)

    def _error(self, call: ToolCallRequest, message: str) -> ToolResult:
        logger.warning(f'Tool "{call.name}" ({call.id}) failed: {message}')
        return ToolResult(tool_call_id=call.id, name=call.name, success=False, error_message=message)

    def _bounded(self, call: ToolCallRequest, payload: Any) -> ToolResult:
        text = json.dumps(payload, ensure_ascii=False, default=str)
        size = len(text.encode("utf-8"))
        limit = self._limits.max_tool_result_bytes
        if limit <= 0 or size <= limit:
            return ToolResult(
                tool_call_id=call.id, name=call.name, success=True, payload=payload, serialized_size=size
            )

        preview_bytes = max(0, limit // 2)
        preview = text.encode("utf-8")[:preview_bytes].decode("utf-8", errors="ignore")
        logger.warning(f"{call.name} result truncated from {size:,} bytes (limit {limit:,})")
        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            success=True,
            payload={"_truncated": True, "_original_size": size, "preview": preview},
            serialized_size=size,
            truncated=True,
        )
