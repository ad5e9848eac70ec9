from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from cashflow_assistant.agent_config import AgentLimits, CacheTtls


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    azure_endpoint: str | None
    azure_deployment: str | None
    azure_api_version: str | None
    openai_base_url: str | None
    redis_url: str | None
    database_url: str | None
    cashflow_api_base_url: str | None


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    limits: AgentLimits
    key_prefix: str
    session_key: str | None
    user_id: str | None
    account_id: str | None
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_limits(config: dict) -> AgentLimits:
    defaults = AgentLimits()
    ttl_defaults = CacheTtls()
    ttls = config.get("CacheTtlSeconds", {})
    return AgentLimits(
        max_request_bytes=int(config.get("MaxRequestBytes", defaults.max_request_bytes)),
        system_content_max_chars=int(config.get("SystemContentMaxChars", defaults.system_content_max_chars)),
        turn_content_max_chars=int(config.get("TurnContentMaxChars", defaults.turn_content_max_chars)),
        context_content_max_chars=int(config.get("ContextContentMaxChars", defaults.context_content_max_chars)),
        max_eviction_attempts=int(config.get("MaxEvictionAttempts", defaults.max_eviction_attempts)),
        max_tool_result_bytes=int(config.get("MaxToolResultBytes", defaults.max_tool_result_bytes)),
        tool_timeout_seconds=float(config.get("ToolTimeoutSeconds", defaults.tool_timeout_seconds)),
        history_max_messages=int(config.get("HistoryMaxMessages", defaults.history_max_messages)),
        session_ttl_seconds=int(config.get("SessionTtlSeconds", defaults.session_ttl_seconds)),
        store_timeout_seconds=float(config.get("StoreTimeoutSeconds", defaults.store_timeout_seconds)),
        freshness_minutes=float(config.get("CacheFreshnessMinutes", defaults.freshness_minutes)),
        cache_ttls=CacheTtls(
            context=int(ttls.get("Context", ttl_defaults.context)),
            profile=int(ttls.get("Profile", ttl_defaults.profile)),
            balances=int(ttls.get("Balances", ttl_defaults.balances)),
            transactions=int(ttls.get("Transactions", ttl_defaults.transactions)),
        ),
        cache_timeout_seconds=float(config.get("CacheTimeoutSeconds", defaults.cache_timeout_seconds)),
        max_retries=int(config.get("MaxRetries", defaults.max_retries)),
        retry_base_delay_seconds=float(config.get("RetryBaseDelaySeconds", defaults.retry_base_delay_seconds)),
        retry_max_delay_seconds=float(config.get("RetryMaxDelaySeconds", defaults.retry_max_delay_seconds)),
        default_retry_after_seconds=float(
            config.get("DefaultRetryAfterSeconds", defaults.default_retry_after_seconds)
        ),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", defaults.request_timeout_seconds)),
    )


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        provider_name=config.get("Provider", "azure").strip().lower(),
        model=config.get("Model", "gpt-4o-mini"),
        max_tokens=int(config.get("MaxTokens", 1000)),
        temperature=float(config.get("Temperature", 0.7)),
        limits=parse_limits(config),
        key_prefix=str(config.get("KeyPrefix", "cfa")),
        session_key=_optional_str(config.get("SessionKey")),
        user_id=_optional_str(config.get("UserId")),
        account_id=_optional_str(config.get("AccountId")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "azure":
        provider_api_key = os.environ.get("AZURE_OPENAI_API_KEY", "")
        provider_env_var = "AZURE_OPENAI_API_KEY"
    else:
        provider_api_key = os.environ.get("OPENAI_API_KEY", "")
        provider_env_var = "OPENAI_API_KEY"

    return RuntimeEnv(
        provider_api_key=provider_api_key,
        provider_env_var=provider_env_var,
        azure_endpoint=os.environ.get("AZURE_OPENAI_ENDPOINT"),
        azure_deployment=os.environ.get("AZURE_OPENAI_DEPLOYMENT"),
        azure_api_version=os.environ.get("AZURE_OPENAI_API_VERSION"),
        openai_base_url=os.environ.get("OPENAI_BASE_URL"),
        redis_url=os.environ.get("REDIS_URL"),
        database_url=os.environ.get("DATABASE_URL"),
        cashflow_api_base_url=os.environ.get("CASHFLOW_API_BASE_URL"),
    )
