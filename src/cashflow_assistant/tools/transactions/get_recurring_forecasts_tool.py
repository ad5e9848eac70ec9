from typing import Any

from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for, page_request_for
from cashflow_assistant.tools.page_formatter import SMART_LIMITS, page_payload, page_schema_properties


class GetRecurringForecastsTool:
    def __init__(self, provider: TransactionsProvider):
        self._provider = provider

    @property
    def name(self) -> str:
        return "get_recurring_forecasts"

    @property
    def description(self) -> str:
        return "List recurring forecast transactions (bills, paychecks, subscriptions) for an account."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "accountId": {
                    "type": "string",
                    "description": "Account id (default: the currently selected account)",
                },
                **page_schema_properties(SMART_LIMITS["forecasts"]),
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        account_id = account_id_for(arguments, context)
        request = page_request_for(arguments, SMART_LIMITS["forecasts"])
        result = await self._provider.page_recurring(account_id, request)
        return page_payload(result, "forecasts", "recurring forecasts")
