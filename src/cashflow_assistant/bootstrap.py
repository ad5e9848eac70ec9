from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from cashflow_assistant.agent_config import AgentConfig
from cashflow_assistant.app_config import AppConfig, RuntimeEnv
from cashflow_assistant.assistant import Assistant
from cashflow_assistant.completion_client import CompletionClient, create_client
from cashflow_assistant.context_cache import ContextCache
from cashflow_assistant.data.accounts import AccountsProvider
from cashflow_assistant.data.cashflow_api import CashflowApiClient
from cashflow_assistant.data.query import SqlQueryRunner
from cashflow_assistant.data.transactions import TransactionsProvider
from cashflow_assistant.kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from cashflow_assistant.logging_config import setup_logging
from cashflow_assistant.session_store import SessionStore
from cashflow_assistant.tool_registry import ToolRegistry, get_all


@dataclass
class AppRuntime:
    assistant: Assistant
    store: KeyValueStore
    store_description: str
    api: CashflowApiClient | None
    sql: SqlQueryRunner | None
    log_descriptions: list[str]

    async def close(self) -> None:
        if self.api is not None:
            await self.api.close()
        if self.sql is not None:
            self.sql.dispose()
        await self.store.close()


def build_store(app: AppConfig, env: RuntimeEnv) -> tuple[KeyValueStore, str]:
    if env.redis_url:
        return (
            RedisKeyValueStore.from_url(env.redis_url, timeout_seconds=app.limits.store_timeout_seconds),
            "redis",
        )
    logger.warning("REDIS_URL not set; sessions and context cache are process-local")
    return InMemoryKeyValueStore(), "in-memory"


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)
    limits = app.limits

    store, store_description = build_store(app, env)

    api: CashflowApiClient | None = None
    if env.cashflow_api_base_url:
        api = CashflowApiClient(env.cashflow_api_base_url, timeout_seconds=limits.cache_timeout_seconds)

    sql: SqlQueryRunner | None = None
    accounts: AccountsProvider | None = None
    transactions: TransactionsProvider | None = None
    if env.database_url:
        sql = SqlQueryRunner.from_url(env.database_url, timeout_seconds=limits.tool_timeout_seconds)
        accounts = AccountsProvider(sql)
        transactions = TransactionsProvider(sql)

    cache: ContextCache | None = None
    if api is not None:
        cache = ContextCache(store, api, limits, key_prefix=app.key_prefix)

    registry = ToolRegistry(
        get_all(
            accounts=accounts,
            transactions=transactions,
            api=api,
            on_transaction_written=cache.invalidate_account if cache is not None else None,
        )
    )

    # Azure routes by deployment; the model name is informational there.
    model = env.azure_deployment if app.provider_name == "azure" and env.azure_deployment else app.model
    completion = CompletionClient(
        create_client(app.provider_name, env, limits),
        model=model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        limits=limits,
    )

    sessions = SessionStore(
        store,
        max_messages=limits.history_max_messages,
        ttl_seconds=limits.session_ttl_seconds,
        timeout_seconds=limits.store_timeout_seconds,
        key_prefix=app.key_prefix,
    )

    assistant = Assistant(
        AgentConfig(
            model=model,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            limits=limits,
        ),
        completion=completion,
        registry=registry,
        sessions=sessions,
        cache=cache,
    )

    return AppRuntime(
        assistant=assistant,
        store=store,
        store_description=store_description,
        api=api,
        sql=sql,
        log_descriptions=log_descriptions,
    )
