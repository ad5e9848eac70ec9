from datetime import UTC, datetime
from typing import Any, Callable

from cashflow_assistant.data.cashflow_api import CashflowApiClient, layout_request
from cashflow_assistant.dates import parse_day
from cashflow_assistant.errors import ToolExecutionError
from cashflow_assistant.tool import ToolCallContext


class GetSelectedAccountsTool:
    def __init__(self, api: CashflowApiClient, clock: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self._api = api
        self._clock = clock

    @property
    def name(self) -> str:
        return "get_selected_accounts"

    @property
    def description(self) -> str:
        return (
            "Get the cash-flow layout for one or more accounts: categories, shopping list, "
            "recent and upcoming transactions, possible recurring transactions, spending "
            "breakdown and available balance."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "accountIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Account ids (default: the currently selected account)",
                },
                "currentDate": {"type": "string", "description": "Reference date, YYYY-MM-DD (default today)"},
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        account_ids = [str(a) for a in arguments.get("accountIds") or [] if a]
        if not account_ids and context.account_id:
            account_ids = [context.account_id]
        if not account_ids:
            raise ToolExecutionError("accountIds is required and no account is selected")

        today = parse_day(arguments.get("currentDate")) or self._clock().date()
        return await self._api.get_selected_accounts(
            context.user_id, context.auth_token, layout_request(today, account_ids)
        )
