from dataclasses import dataclass, field


@dataclass(frozen=True)
class CacheTtls:
    context: int = 3600
    profile: int = 7200
    balances: int = 1800
    transactions: int = 1800


@dataclass(frozen=True)
class AgentLimits:
    # Context window
    max_request_bytes: int = 60_000
    system_content_max_chars: int = 12_000
    turn_content_max_chars: int = 2_000
    context_content_max_chars: int = 24_000
    max_eviction_attempts: int = 20

    # Tools
    max_tool_result_bytes: int = 12_000
    tool_timeout_seconds: float = 20.0

    # Session store
    history_max_messages: int = 20
    session_ttl_seconds: int = 86_400
    store_timeout_seconds: float = 3.0

    # Context cache
    freshness_minutes: float = 30.0
    cache_ttls: CacheTtls = field(default_factory=CacheTtls)
    cache_timeout_seconds: float = 15.0

    # Upstream completion service
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    default_retry_after_seconds: float = 2.0
    request_timeout_seconds: float = 60.0


@dataclass
class AgentConfig:
    model: str = "gpt-4o-mini"
    max_tokens: int = 1000
    temperature: float = 0.7
    system_prompt: str = ""
    limits: AgentLimits = field(default_factory=AgentLimits)
