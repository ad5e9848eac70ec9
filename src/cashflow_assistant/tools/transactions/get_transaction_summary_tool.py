from typing import Any

from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for, optional_str


class GetTransactionSummaryTool:
    def __init__(self, provider: TransactionsProvider):
        self._provider = provider

    @property
    def name(self) -> str:
        return "get_transaction_summary"

    @property
    def description(self) -> str:
        return (
            "Summarize an account's transactions in a date range (count, income, expenses, "
            "net, counts by status) without loading the individual rows. Prefer this for "
            "totals and trends over long periods."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "accountId": {
                    "type": "string",
                    "description": "Account id (default: the currently selected account)",
                },
                "startDate": {"type": "string", "description": "Range start, YYYY-MM-DD"},
                "endDate": {"type": "string", "description": "Range end, YYYY-MM-DD"},
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        summary = await self._provider.summary(
            account_id_for(arguments, context),
            optional_str(arguments, "startDate"),
            optional_str(arguments, "endDate"),
        )
        return {"summary": summary}
