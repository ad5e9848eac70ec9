from __future__ import annotations

from datetime import date, timedelta
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from cashflow_assistant.dates import add_months
from cashflow_assistant.errors import DataProviderError


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


class CashflowApiClient:
    """Client for the remote cash-flow backend (user profile, account layout, balances, writes)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    @staticmethod
    def _headers(token: str | None) -> dict[str, str]:
        # Authorization is only attached when a token is present.
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, path: str, token: str | None, body: Any = None) -> Any:
        try:
            resp = await self._client.request(method, path, headers=self._headers(token), json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as ex:
            status = ex.response.status_code
            logger.warning(f"Cash-flow API {method} {path} returned HTTP {status}")
            raise DataProviderError(f"cash-flow API error: HTTP {status} on {method} {path}") from ex
        except httpx.HTTPError as ex:
            logger.warning(f"Cash-flow API {method} {path} failed: {ex!r}")
            raise DataProviderError(f"cash-flow API unreachable: {type(ex).__name__}") from ex
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as ex:
            raise DataProviderError(f"cash-flow API returned non-JSON body on {method} {path}") from ex

    async def get_user_data(self, user_id: str, token: str | None) -> Any:
        return await self._request("GET", f"/user/{_segment(user_id)}", token)

    async def get_accounts(self, user_id: str, token: str | None) -> Any:
        return await self._request("GET", f"/account/getall/{_segment(user_id)}", token)

    async def get_selected_accounts(self, user_id: str, token: str | None, body: dict) -> Any:
        return await self._request(
            "POST", f"/account/getselectedkeacastaccountsnew/{_segment(user_id)}", token, body
        )

    async def get_balances(self, user_id: str, account_id: str, token: str | None) -> Any:
        return await self._request("GET", f"/balances/{_segment(user_id)}/{_segment(account_id)}", token)

    async def get_categories(self, user_id: str, token: str | None) -> Any:
        return await self._request("GET", f"/api/categories/{_segment(user_id)}", token)

    async def get_shopping_list(self, user_id: str, token: str | None) -> Any:
        return await self._request("GET", f"/list/get/{_segment(user_id)}", token)

    async def create_transaction(self, user_id: str, account_id: str, token: str | None, transaction: dict) -> Any:
        return await self._request(
            "POST",
            f"/transaction/create/{_segment(user_id)}/{_segment(account_id)}",
            token,
            transaction,
        )

    async def close(self) -> None:
        await self._client.aclose()


def layout_request(today: date, account_ids: list[str], user: Any = None) -> dict:
    """Body for the selected-accounts layout call: recent -3 months..+1 day, upcoming +14 days."""
    return {
        "currentDate": today.isoformat(),
        "forecastType": "F",
        "recentStart": add_months(today, -3).isoformat(),
        "recentEnd": (today + timedelta(days=1)).isoformat(),
        "upcomingEnd": (today + timedelta(days=14)).isoformat(),
        "page": "layout",
        "position": 0,
        "selectedAccounts": list(account_ids),
        "user": user,
    }
