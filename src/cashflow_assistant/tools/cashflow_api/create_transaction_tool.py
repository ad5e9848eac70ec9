from typing import Any, Awaitable, Callable

from loguru import logger

from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.dates import parse_day
from cashflow_assistant.errors import ToolExecutionError
from cashflow_assistant.tool import ToolCallContext
from cashflow_assistant.tools.arguments import account_id_for

_FIELDS = ("name", "amount", "start", "end", "frequency", "category", "forecast_type", "description")


class CreateTransactionTool:
    def __init__(
        self,
        api: CashflowApiClient,
        on_written: Callable[[str, str], Awaitable[Any]] | None = None,
    ):
        self._api = api
        self._on_written = on_written

    @property
    def name(self) -> str:
        return "create_transaction"

    @property
    def description(self) -> str:
        return (
            "Create a transaction or recurring forecast on the user's account. "
            "Only call this when the user explicitly asks to add a transaction. "
            "Amounts are positive for income and negative for expenses."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Payee or label"},
                "amount": {"type": "number", "description": "Signed amount"},
                "start": {"type": "string", "description": "First date, YYYY-MM-DD"},
                "end": {"type": "string", "description": "Last date for recurring items, YYYY-MM-DD"},
                "frequency": {
                    "type": "integer",
                    "description": "Recurrence interval in days (2 = once, 7 weekly, 30 monthly, 365 annually)",
                },
                "category": {"type": "string", "description": "Category name"},
                "forecast_type": {"type": "string", "description": "Forecast type code (default F)"},
                "description": {"type": "string", "description": "Free-text note"},
                "accountId": {
                    "type": "string",
                    "description": "Account id (default: the currently selected account)",
                },
            },
            "required": ["name", "amount", "start"],
        }

    @property
    def is_mutating(self) -> bool:
        return True

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any:
        account_id = account_id_for(arguments, context)
        transaction = {k: arguments[k] for k in _FIELDS if arguments.get(k) is not None}

        missing = [k for k in self.input_schema["required"] if k not in transaction]
        if missing:
            raise ToolExecutionError(f"missing required field(s): {', '.join(missing)}")
        amount = transaction["amount"]
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ToolExecutionError("amount must be a number")
        for field in ("start", "end"):
            if field in transaction and parse_day(transaction[field]) is None:
                raise ToolExecutionError(f"{field} must be a YYYY-MM-DD date")
        transaction.setdefault("frequency", 2)
        transaction.setdefault("forecast_type", "F")

        result = await self._api.create_transaction(context.user_id, account_id, context.auth_token, transaction)
        logger.info(f"Created transaction for user {context.user_id} account {account_id}")

        if self._on_written is not None:
            await self._on_written(context.user_id, account_id)
        return result
