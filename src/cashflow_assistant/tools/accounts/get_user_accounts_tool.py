from typing import Any

from loguru import logger

from cashflow_assistant.data.accounts import AccountsProvider
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import page_request_for
from cashflow_assistant.tools.page_formatter import SMART_LIMITS, page_payload, page_schema_properties


class GetUserAccountsTool:
    def __init__(self, provider: AccountsProvider):
        self._provider = provider

    @property
    def name(self) -> str:
        return "get_user_accounts"

    @property
    def description(self) -> str:
        return (
            "List the user's financial accounts in display order. "
            "Results are paginated; the first page says how many accounts exist in total."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": page_schema_properties(SMART_LIMITS["accounts"]),
            "required": [],
        }

    @property
    def is_mutating(self) -> bool:
        return False

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        request = page_request_for(arguments, SMART_LIMITS["accounts"])
        result = await self._provider.page_by_owner(context.user_id, request)
        logger.debug(f"get_user_accounts user={context.user_id} page={request.page} limit={request.limit}")
        return page_payload(result, "accounts", "accounts")
