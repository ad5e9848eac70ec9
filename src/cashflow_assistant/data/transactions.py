from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Callable

from cashflow_assistant.data.paging import CountFallback, PageRequest, PageResult, paginate
from cashflow_assistant.data.query import SqlQueryRunner
from cashflow_assistant.dates import add_years, display_day, parse_day

# Recurrence interval in days -> label.
FREQUENCY_LABELS = {
    "2": "Once", "1": "Daily", "7": "Weekly", "14": "Bi-Weekly",
    "15": "Semi-Monthly", "16": "Semi-Monthly",
    "28": "Monthly", "29": "Monthly", "30": "Monthly", "31": "Monthly",
    "59": "Bi-Monthly", "60": "Bi-Monthly", "61": "Bi-Monthly", "62": "Bi-Monthly",
    "91": "Quarterly", "182": "Semi-Annually", "183": "Semi-Annually",
    "365": "Annually", "366": "Annually",
}


def transaction_status(row: dict) -> str:
    if not row.get("match_id"):
        return "Forecast"
    return "Posted" if row.get("forecast_type") == "A" else "Pending"


def hydrate(row: dict) -> dict:
    """Add ISO and display dates, a frequency label and a posting status to a raw row."""
    hydrated = dict(row)
    for name in ("start", "end"):
        day = parse_day(row.get(name))
        if day is not None:
            hydrated[name] = day.isoformat()
            hydrated[f"{name}_display"] = display_day(day)
    hydrated["frequency_label"] = FREQUENCY_LABELS.get(str(row.get("frequency")), "Unknown")
    hydrated["status"] = transaction_status(row)
    for key, value in hydrated.items():
        if isinstance(value, Decimal):
            hydrated[key] = float(value)
    return hydrated


class TransactionsProvider:
    def __init__(self, runner: SqlQueryRunner, clock: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self._runner = runner
        self._clock = clock

    def default_range(self) -> tuple[str, str]:
        """One year back to two years ahead of yesterday."""
        anchor = self._clock().date() - timedelta(days=1)
        return add_years(anchor, -1).isoformat(), add_years(anchor, 2).isoformat()

    def upcoming_range(self) -> tuple[str, str]:
        today = self._clock().date()
        return today.isoformat(), (today + timedelta(days=14)).isoformat()

    def _range(self, start_date: str | None, end_date: str | None) -> tuple[str, str]:
        default_start, default_end = self.default_range()
        return _iso(start_date) or default_start, _iso(end_date) or default_end

    # -- transactions by user and account --

    async def list_for_account(
        self,
        user_id: str,
        account_id: str,
        request: PageRequest,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        start, end = self._range(start_date, end_date)
        rows = await self._runner.fetch_all(
            "SELECT t.*, c.logo FROM transactions t "
            "LEFT JOIN categories c ON t.category = c.name AND c.user_id = :user_id "
            "WHERE t.accountid = :account_id AND t.start BETWEEN :start AND :end "
            "ORDER BY t.start DESC LIMIT :limit OFFSET :offset",
            {
                "user_id": user_id,
                "account_id": account_id,
                "start": start,
                "end": end,
                "limit": request.limit,
                "offset": request.offset,
            },
        )
        return [hydrate(r) for r in rows]

    async def count_for_account(
        self,
        account_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> int:
        start, end = self._range(start_date, end_date)
        total = await self._runner.fetch_scalar(
            "SELECT COUNT(*) FROM transactions WHERE accountid = :account_id AND start BETWEEN :start AND :end",
            {"account_id": account_id, "start": start, "end": end},
        )
        return int(total or 0)

    async def page_for_account(
        self,
        user_id: str,
        account_id: str,
        request: PageRequest,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> PageResult | CountFallback:
        return await paginate(
            lambda req: self.list_for_account(user_id, account_id, req, start_date, end_date),
            lambda: self.count_for_account(account_id, start_date, end_date),
            request,
            "transactions",
        )

    # -- recurring forecasts --

    async def list_recurring(self, account_id: str, request: PageRequest) -> list[dict]:
        rows = await self._runner.fetch_all(
            "SELECT * FROM transactions WHERE accountid = :account_id AND forecast_type IN ('RF', 'F') "
            "ORDER BY start ASC LIMIT :limit OFFSET :offset",
            {"account_id": account_id, "limit": request.limit, "offset": request.offset},
        )
        return [hydrate(r) for r in rows]

    async def count_recurring(self, account_id: str) -> int:
        total = await self._runner.fetch_scalar(
            "SELECT COUNT(*) FROM transactions WHERE accountid = :account_id AND forecast_type IN ('RF', 'F')",
            {"account_id": account_id},
        )
        return int(total or 0)

    async def page_recurring(self, account_id: str, request: PageRequest) -> PageResult | CountFallback:
        return await paginate(
            lambda req: self.list_recurring(account_id, req),
            lambda: self.count_recurring(account_id),
            request,
            "recurring forecasts",
        )

    # -- upcoming by range and forecast type --

    async def list_upcoming(
        self,
        account_id: str,
        start_date: str,
        end_date: str,
        request: PageRequest,
        forecast_type: str = "F",
    ) -> list[dict]:
        rows = await self._runner.fetch_all(
            "SELECT * FROM transactions WHERE accountid = :account_id AND forecast_type = :forecast_type "
            "AND start BETWEEN :start AND :end ORDER BY start ASC LIMIT :limit OFFSET :offset",
            {
                "account_id": account_id,
                "forecast_type": forecast_type,
                "start": start_date,
                "end": end_date,
                "limit": request.limit,
                "offset": request.offset,
            },
        )
        return [hydrate(r) for r in rows]

    async def count_upcoming(self, account_id: str, start_date: str, end_date: str, forecast_type: str = "F") -> int:
        total = await self._runner.fetch_scalar(
            "SELECT COUNT(*) FROM transactions WHERE accountid = :account_id AND forecast_type = :forecast_type "
            "AND start BETWEEN :start AND :end",
            {"account_id": account_id, "forecast_type": forecast_type, "start": start_date, "end": end_date},
        )
        return int(total or 0)

    async def page_upcoming(
        self,
        account_id: str,
        start_date: str,
        end_date: str,
        request: PageRequest,
        forecast_type: str = "F",
    ) -> PageResult | CountFallback:
        return await paginate(
            lambda req: self.list_upcoming(account_id, start_date, end_date, req, forecast_type),
            lambda: self.count_upcoming(account_id, start_date, end_date, forecast_type),
            request,
            "upcoming transactions",
        )

    # -- aggregate --

    async def summary(
        self,
        account_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict:
        """Totals for a range without loading the rows."""
        start, end = self._range(start_date, end_date)
        row = await self._runner.fetch_one(
            "SELECT COUNT(*) AS total_transactions, "
            "COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS total_income, "
            "COALESCE(SUM(CASE WHEN amount < 0 THEN -amount ELSE 0 END), 0) AS total_expenses, "
            "COALESCE(SUM(CASE WHEN match_id IS NOT NULL AND forecast_type = 'A' THEN 1 ELSE 0 END), 0) AS posted, "
            "COALESCE(SUM(CASE WHEN match_id IS NOT NULL AND forecast_type <> 'A' THEN 1 ELSE 0 END), 0) AS pending, "
            "COALESCE(SUM(CASE WHEN match_id IS NULL THEN 1 ELSE 0 END), 0) AS forecast, "
            "MIN(start) AS earliest, MAX(start) AS latest "
            "FROM transactions WHERE accountid = :account_id AND start BETWEEN :start AND :end",
            {"account_id": account_id, "start": start, "end": end},
        ) or {}
        income = float(row.get("total_income") or 0)
        expenses = float(row.get("total_expenses") or 0)
        earliest, latest = parse_day(row.get("earliest")), parse_day(row.get("latest"))
        return {
            "start_date": start,
            "end_date": end,
            "total_transactions": int(row.get("total_transactions") or 0),
            "total_income": round(income, 2),
            "total_expenses": round(expenses, 2),
            "net": round(income - expenses, 2),
            "by_status": {
                "Posted": int(row.get("posted") or 0),
                "Pending": int(row.get("pending") or 0),
                "Forecast": int(row.get("forecast") or 0),
            },
            "earliest": earliest.isoformat() if earliest else None,
            "latest": latest.isoformat() if latest else None,
        }


def _iso(value: str | date | None) -> str | None:
    day = parse_day(value)
    return day.isoformat() if day else None
