from __future__ import annotations

from typing import Any

from cashflow_assistant.data.paging import PageRequest
from cashflow_assistant.errors import ToolExecutionError
from cashflow_assistant.tool import ToolCallContext


def account_id_for(arguments: dict[str, Any], context: ToolCallContext) -> str:
    """The account named in the arguments, else the caller's current account."""
    account_id = arguments.get("accountId") or context.account_id
    if not account_id:
        raise ToolExecutionError("accountId is required and no account is selected")
    return str(account_id)


def page_request_for(arguments: dict[str, Any], default_limit: int) -> PageRequest:
    try:
        return PageRequest.from_args(arguments, default_limit)
    except (TypeError, ValueError) as ex:
        raise ToolExecutionError(f"invalid pagination arguments: {ex}") from ex


def optional_str(arguments: dict[str, Any], name: str) -> str | None:
    value = arguments.get(name)
    if value is None:
        return None
    return str(value).strip() or None
