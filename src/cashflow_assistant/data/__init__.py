from cashflow_assistant.data.accounts import AccountsProvider
from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.data.paging import CountFallback, PageRequest, PageResult, paginate
from cashflow_assistant.data.query import SqlQueryRunner, is_resource_exhausted
from cashflow_assistant.data.transactions import TransactionsProvider, hydrate

__all__ = [
    "AccountsProvider",
    "CashflowApiClient",
    "CountFallback",
    "PageRequest",
    "PageResult",
    "SqlQueryRunner",
    "TransactionsProvider",
    "hydrate",
    "is_resource_exhausted",
    "paginate",
]
