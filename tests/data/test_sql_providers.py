import asyncio
import os
import tempfile
import unittest
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import create_engine, text

from cashflow_assistant.data.accounts import AccountsProvider
from cashflow_assistant.data.paging import PageRequest, PageResult
from cashflow_assistant.data.query import SqlQueryRunner
from cashflow_assistant.data.transactions import TransactionsProvider, hydrate, transaction_status
from cashflow_assistant.errors import DataProviderError

SCHEMA = [
    "CREATE TABLE accounts (accountid TEXT, userid TEXT, name TEXT, account_order INTEGER)",
    "CREATE TABLE categories (name TEXT, user_id TEXT, logo TEXT)",
    "CREATE TABLE transactions (id INTEGER PRIMARY KEY, accountid TEXT, name TEXT, amount NUMERIC, "
    'start TEXT, "end" TEXT, frequency INTEGER, forecast_type TEXT, match_id TEXT, category TEXT)',
]

ACCOUNTS = [
    ("a1", "u1", "Checking", 2),
    ("a3", "u1", "Savings", 1),
    ("a2", "u2", "Joint", 1),
]

CATEGORIES = [
    ("Rent", "u1", "rent.png"),
    ("Rent", "u2", "someone-else.png"),
]

TRANSACTIONS = [
    ("a1", "Salary", 3000, "2025-03-01", None, 30, "A", "m1", "Income"),
    ("a1", "Rent", -1200, "2025-03-05", None, 30, "F", None, "Rent"),
    ("a1", "Coffee", -4.5, "2025-03-10", None, 2, "P", "m2", None),
    ("a1", "Gym", -50, "2025-03-20", None, 30, "RF", None, None),
    ("a1", "Insurance", -80, "2025-03-25", None, 365, "F", None, None),
    ("a1", "Ancient", -10, "2020-01-01", None, 2, "A", "m3", None),
    ("a2", "Other", 100, "2025-03-02", None, 2, "F", None, None),
]


def _runner(directory: str) -> SqlQueryRunner:
    # File-backed so concurrent worker threads each get their own connection.
    engine = create_engine(
        f"sqlite:///{os.path.join(directory, 'cashflow.db')}",
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.execute(text(statement))
        for row in ACCOUNTS:
            conn.execute(
                text("INSERT INTO accounts VALUES (:a, :u, :n, :o)"),
                dict(zip("auno", row)),
            )
        for row in CATEGORIES:
            conn.execute(text("INSERT INTO categories VALUES (:n, :u, :l)"), dict(zip("nul", row)))
        for row in TRANSACTIONS:
            conn.execute(
                text(
                    "INSERT INTO transactions (accountid, name, amount, start, \"end\", frequency, "
                    "forecast_type, match_id, category) VALUES (:a, :n, :m, :s, :e, :f, :t, :x, :c)"
                ),
                dict(zip("anmseftxc", row)),
            )
    return SqlQueryRunner(engine, timeout_seconds=5)


class AccountsProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        directory = tempfile.TemporaryDirectory()
        self.addCleanup(directory.cleanup)
        self.runner = _runner(directory.name)
        self.accounts = AccountsProvider(self.runner)

    def tearDown(self) -> None:
        self.runner.dispose()

    def test_list_by_owner_orders_by_account_order(self) -> None:
        rows = asyncio.run(self.accounts.list_by_owner("u1", PageRequest()))
        self.assertEqual(["a3", "a1"], [r["accountid"] for r in rows])

    def test_page_by_owner(self) -> None:
        result = asyncio.run(self.accounts.page_by_owner("u1", PageRequest(page=1, limit=1)))
        self.assertIsInstance(result, PageResult)
        self.assertEqual(2, result.total)
        self.assertTrue(result.has_next)
        self.assertEqual(["a3"], [r["accountid"] for r in result.items])

    def test_get_by_id(self) -> None:
        self.assertEqual("u2", asyncio.run(self.accounts.get_by_id("a2"))["userid"])
        self.assertIsNone(asyncio.run(self.accounts.get_by_id("missing")))

    def test_query_errors_become_provider_errors(self) -> None:
        with self.assertRaises(DataProviderError):
            asyncio.run(self.runner.fetch_all("SELECT * FROM no_such_table"))


class TransactionsProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        directory = tempfile.TemporaryDirectory()
        self.addCleanup(directory.cleanup)
        self.runner = _runner(directory.name)
        self.transactions = TransactionsProvider(self.runner, clock=lambda: datetime(2025, 3, 14, 9, 0, tzinfo=UTC))

    def tearDown(self) -> None:
        self.runner.dispose()

    def test_default_ranges(self) -> None:
        self.assertEqual(("2024-03-13", "2027-03-13"), self.transactions.default_range())
        self.assertEqual(("2025-03-14", "2025-03-28"), self.transactions.upcoming_range())

    def test_list_for_account_is_newest_first_within_default_range(self) -> None:
        rows = asyncio.run(self.transactions.list_for_account("u1", "a1", PageRequest()))

        self.assertEqual(["Insurance", "Gym", "Coffee", "Rent", "Salary"], [r["name"] for r in rows])
        rent = rows[3]
        self.assertEqual("rent.png", rent["logo"])
        self.assertEqual("Forecast", rent["status"])
        self.assertEqual("Monthly", rent["frequency_label"])
        self.assertEqual("Mar 05, 2025", rent["start_display"])
        self.assertEqual("Posted", rows[4]["status"])
        self.assertEqual("Pending", rows[2]["status"])

    def test_page_for_account_with_explicit_range(self) -> None:
        result = asyncio.run(
            self.transactions.page_for_account(
                "u1", "a1", PageRequest(page=2, limit=2), start_date="2025-03-01", end_date="2025-03-15"
            )
        )
        self.assertEqual(3, result.total)
        self.assertEqual(["Salary"], [r["name"] for r in result.items])
        self.assertFalse(result.has_next)

    def test_recurring_forecasts(self) -> None:
        result = asyncio.run(self.transactions.page_recurring("a1", PageRequest()))
        self.assertEqual(["Rent", "Gym", "Insurance"], [r["name"] for r in result.items])
        self.assertEqual(3, result.total)

    def test_upcoming_by_type_and_range(self) -> None:
        start, end = self.transactions.upcoming_range()
        result = asyncio.run(self.transactions.page_upcoming("a1", start, end, PageRequest()))
        self.assertEqual(["Insurance"], [r["name"] for r in result.items])
        self.assertEqual("Annually", result.items[0]["frequency_label"])

        recurring = asyncio.run(self.transactions.page_upcoming("a1", start, end, PageRequest(), forecast_type="RF"))
        self.assertEqual(["Gym"], [r["name"] for r in recurring.items])

    def test_summary(self) -> None:
        summary = asyncio.run(self.transactions.summary("a1", "2025-03-01", "2025-03-31"))

        self.assertEqual(5, summary["total_transactions"])
        self.assertEqual(3000.0, summary["total_income"])
        self.assertEqual(1334.5, summary["total_expenses"])
        self.assertEqual(1665.5, summary["net"])
        self.assertEqual({"Posted": 1, "Pending": 1, "Forecast": 3}, summary["by_status"])
        self.assertEqual("2025-03-01", summary["earliest"])
        self.assertEqual("2025-03-25", summary["latest"])

    def test_summary_of_empty_range(self) -> None:
        summary = asyncio.run(self.transactions.summary("a1", "2030-01-01", "2030-12-31"))
        self.assertEqual(0, summary["total_transactions"])
        self.assertEqual(0.0, summary["net"])
        self.assertIsNone(summary["earliest"])


class HydrateTests(unittest.TestCase):
    def test_normalizes_dates_and_decimals(self) -> None:
        row = hydrate({
            "start": datetime(2025, 1, 2, 8, 30),
            "end": date(2025, 12, 31),
            "amount": Decimal("-12.50"),
            "frequency": 14,
            "forecast_type": "A",
            "match_id": "m",
        })
        self.assertEqual("2025-01-02", row["start"])
        self.assertEqual("Jan 02, 2025", row["start_display"])
        self.assertEqual("2025-12-31", row["end"])
        self.assertEqual(-12.5, row["amount"])
        self.assertEqual("Bi-Weekly", row["frequency_label"])
        self.assertEqual("Posted", row["status"])

    def test_unknown_frequency_and_missing_dates(self) -> None:
        row = hydrate({"frequency": 3, "start": None})
        self.assertEqual("Unknown", row["frequency_label"])
        self.assertNotIn("start_display", row)
        self.assertEqual("Forecast", transaction_status(row))


if __name__ == "__main__":
    unittest.main()
