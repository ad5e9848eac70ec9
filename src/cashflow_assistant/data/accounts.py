from __future__ import annotations

from cashflow_assistant.data.paging import CountFallback, PageRequest, PageResult, paginate
from cashflow_assistant.data.query import SqlQueryRunner


class AccountsProvider:
    def __init__(self, runner: SqlQueryRunner):
        self._runner = runner

    async def list_by_owner(self, user_id: str, request: PageRequest) -> list[dict]:
        return await self._runner.fetch_all(
            "SELECT * FROM accounts WHERE userid = :user_id "
            "ORDER BY account_order ASC LIMIT :limit OFFSET :offset",
            {"user_id": user_id, "limit": request.limit, "offset": request.offset},
        )

    async def count_by_owner(self, user_id: str) -> int:
        total = await self._runner.fetch_scalar(
            "SELECT COUNT(*) AS total FROM accounts WHERE userid = :user_id",
            {"user_id": user_id},
        )
        return int(total or 0)

    async def get_by_id(self, account_id: str) -> dict | None:
        return await self._runner.fetch_one(
            "SELECT * FROM accounts WHERE accountid = :account_id LIMIT 1",
            {"account_id": account_id},
        )

    async def page_by_owner(self, user_id: str, request: PageRequest) -> PageResult | CountFallback:
        return await paginate(
            lambda req: self.list_by_owner(user_id, req),
            lambda: self.count_by_owner(user_id),
            request,
            "accounts",
        )
