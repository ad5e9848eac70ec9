from typing import Any

from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for, optional_str, page_request_for
from cashflow_assistant.tools.page_formatter import SMART_LIMITS, page_payload, page_schema_properties


class GetUpcomingTransactionsTool:
    def __init__(self, provider: TransactionsProvider):
        self._provider = provider

    @property
    def name(self) -> str:
        return "get_upcoming_transactions"

    @property
    def description(self) -> str:
        return (
            "List upcoming transactions for an account in a date range, soonest first. "
            "Defaults to today through the next 14 days and forecast type F."
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
                "forecastType": {
                    "type": "string",
                    "description": "Forecast type code (default F)",
                },
                **page_schema_properties(SMART_LIMITS["upcoming"]),
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        account_id = account_id_for(arguments, context)
        default_start, default_end = self._provider.upcoming_range()
        start_date = optional_str(arguments, "startDate") or default_start
        end_date = optional_str(arguments, "endDate") or default_end
        forecast_type = optional_str(arguments, "forecastType") or "F"
        request = page_request_for(arguments, SMART_LIMITS["upcoming"])

        result = await self._provider.page_upcoming(account_id, start_date, end_date, request, forecast_type)
        return page_payload(result, "upcoming", "upcoming transactions")
