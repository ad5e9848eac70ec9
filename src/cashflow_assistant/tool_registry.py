from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from cashflow_assistant.data.accounts import AccountsProvider
from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.tool import Tool
from cashflow_assistant.tools.accounts.get_user_accounts_tool import GetUserAccountsTool
from cashflow_assistant.tools.transactions.get_recurring_forecasts_tool import GetRecurringForecastsTool
from cashflow_assistant.tools.transactions.get_transaction_summary_tool import GetTransactionSummaryTool
from cashflow_assistant.tools.transactions.get_upcoming_transactions_tool import GetUpcomingTransactionsTool
from cashflow_assistant.tools.transactions.get_user_transactions_tool import GetUserTransactionsTool


class ToolRegistry:
    """Name -> tool lookup plus the OpenAI function-calling declarations."""

    def __init__(self, tools: list[Tool]):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def schemas(self) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in self._tools.values()
        ]


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[dict], bool]
    build: Callable[[dict], list[Tool]]


def _sql_enabled(ctx: dict) -> bool:
    return ctx.get("accounts") is not None and ctx.get("transactions") is not None


def _sql_tools(ctx: dict) -> list[Tool]:
    transactions = ctx["transactions"]
    return [
        GetUserAccountsTool(ctx["accounts"]),
        GetUserTransactionsTool(transactions),
        GetRecurringForecastsTool(transactions),
        GetUpcomingTransactionsTool(transactions),
        GetTransactionSummaryTool(transactions),
    ]


def _api_enabled(ctx: dict) -> bool:
    return ctx.get("api") is not None


def _api_tools(ctx: dict) -> list[Tool]:
    api = ctx["api"]

    from cashflow_assistant.tools.cashflow_api.create_transaction_tool import CreateTransactionTool
    from cashflow_assistant.tools.cashflow_api.get_balances_tool import GetBalancesTool
    from cashflow_assistant.tools.cashflow_api.get_categories_tool import GetCategoriesTool
    from cashflow_assistant.tools.cashflow_api.get_selected_accounts_tool import GetSelectedAccountsTool
    from cashflow_assistant.tools.cashflow_api.get_shopping_list_tool import GetShoppingListTool
    from cashflow_assistant.tools.cashflow_api.get_user_data_tool import GetUserDataTool

    return [
        GetUserDataTool(api),
        GetSelectedAccountsTool(api),
        GetBalancesTool(api),
        GetCategoriesTool(api),
        GetShoppingListTool(api),
        CreateTransactionTool(api, on_written=ctx.get("on_transaction_written")),
    ]


_GROUPS = [
    ToolGroup(enabled=_sql_enabled, build=_sql_tools),
    ToolGroup(enabled=_api_enabled, build=_api_tools),
]


def get_all(
    accounts: AccountsProvider | None = None,
    transactions: TransactionsProvider | None = None,
    api: CashflowApiClient | None = None,
    on_transaction_written: Callable[[str, str], Awaitable[Any]] | None = None,
) -> list[Tool]:
    ctx = {
        "accounts": accounts,
        "transactions": transactions,
        "api": api,
        "on_transaction_written": on_transaction_written,
    }

    tools: list[Tool] = []
    for group in _GROUPS:
        if group.enabled(ctx):
            tools.extend(group.build(ctx))
    return tools
