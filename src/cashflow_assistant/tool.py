from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolCallContext:
    """Identity of the caller a tool runs on behalf of."""

    user_id: str
    account_id: str | None = None
    auth_token: str | None = None


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    @property
    def is_mutating(self) -> bool: ...

    async def execute(self, arguments: dict[str, Any], context: ToolCallContext) -> Any: ...
