from typing import Any

from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for


class GetBalancesTool:
    def __init__(self, api: CashflowApiClient):
        self._api = api

    @property
    def name(self) -> str:
        return "get_balances"

    @property
    def description(self) -> str:
        return "Get current and forecasted daily balances for an account."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "accountId": {
                    "type": "string",
                    "description": "Account id (default: the currently selected account)",
                },
            },
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        return await self._api.get_balances(
            context.user_id, account_id_for(arguments, context), context.auth_token
        )
