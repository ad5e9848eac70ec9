from typing import Any

from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.tool import ToolCallContext


class GetCategoriesTool:
    def __init__(self, api: CashflowApiClient):
        self._api = api

    @property
    def name(self) -> str:
        return "get_user_categories"

    @property
    def description(self) -> str:
        return "List the user's spending and income categories."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        return await self._api.get_categories(context.user_id, context.auth_token)
