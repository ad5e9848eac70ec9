from typing import Any

from cashflow_assistant.data.paging import CountFallback
from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for, optional_str, page_request_for
from cashflow_assistant.tools.page_formatter import SMART_LIMITS, page_payload, page_schema_properties


class GetUserTransactionsTool:
    def __init__(self, provider: TransactionsProvider):
        self._provider = provider

    @property
    def name(self) -> str:
        return "get_user_transactions"

    @property
    def description(self) -> str:
        return (
            "List transactions for an account, newest first, with posting status "
            "(Posted, Pending, Forecast) and recurrence. Defaults to one year back "
            "through two years ahead. Use smaller date ranges for large accounts."
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
                **page_schema_properties(SMART_LIMITS["transactions"]),
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        account_id = account_id_for(arguments, context)
        start_date = optional_str(arguments, "startDate")
        end_date = optional_str(arguments, "endDate")
        request = page_request_for(arguments, SMART_LIMITS["transactions"])

        result = await self._provider.page_for_account(
            context.user_id, account_id, request, start_date, end_date
        )
        if isinstance(result, CountFallback):
            # A summary is still cheap when listing is not.
            result.details["summary"] = await self._provider.summary(account_id, start_date, end_date)
        return page_payload(result, "transactions", "transactions")
