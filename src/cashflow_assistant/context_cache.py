from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from cashflow_assistant.agent_config import AgentLimits
from cashflow_assistant.data.cashflow_api import layout_request
from cashflow_assistant.dates import add_months, parse_day
from cashflow_assistant.errors import StoreUnavailable
from cashflow_assistant.kv_store import KeyValueStore

# Offset (longitude / 15) -> representative zone.
_TIMEZONE_BY_OFFSET = {
    -12: "Etc/GMT+12", -11: "Pacific/Midway", -10: "Pacific/Honolulu",
    -9: "America/Anchorage", -8: "America/Los_Angeles", -7: "America/Denver",
    -6: "America/Chicago", -5: "America/New_York", -4: "America/Halifax",
    -3: "America/Sao_Paulo", -2: "Atlantic/South_Georgia", -1: "Atlantic/Azores",
    0: "Europe/London", 1: "Europe/Paris", 2: "Europe/Kiev",
    3: "Europe/Moscow", 4: "Asia/Dubai", 5: "Asia/Tashkent",
    6: "Asia/Almaty", 7: "Asia/Bangkok", 8: "Asia/Shanghai",
    9: "Asia/Tokyo", 10: "Australia/Sydney", 11: "Pacific/Guadalcanal",
    12: "Pacific/Auckland",
}


class ContextDataSource(Protocol):
    async def get_user_data(self, user_id: str, token: str | None) -> dict: ...

    async def get_selected_accounts(self, user_id: str, token: str | None, body: dict) -> Any: ...

    async def get_balances(self, user_id: str, account_id: str, token: str | None) -> Any: ...


def timezone_for(latitude: float, longitude: float) -> str:
    return _TIMEZONE_BY_OFFSET.get(round(longitude / 15), "UTC")


def current_date_for(location: dict | None, now: datetime) -> date:
    """Today's date in the user's timezone, approximated from coordinates."""
    if not location:
        return now.astimezone(UTC).date()
    latitude = location.get("latitude")
    longitude = location.get("longitude")
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        return now.astimezone(UTC).date()
    try:
        return now.astimezone(ZoneInfo(timezone_for(latitude, longitude))).date()
    except ZoneInfoNotFoundError:
        logger.warning(f"Timezone data missing for ({latitude}, {longitude}), using UTC")
        return now.astimezone(UTC).date()


def _list_field(source: dict, name: str) -> list:
    value = source.get(name)
    return value if isinstance(value, list) else []


@dataclass
class AccountContext:
    """Validated shape of the per-account context handed to the model."""

    account_id: str
    current_date: str
    built_at: str
    user_data: dict = field(default_factory=dict)
    account: dict = field(default_factory=dict)
    categories: list = field(default_factory=list)
    shopping_list: list = field(default_factory=list)
    cf_transactions: list = field(default_factory=list)
    upcoming_transactions: list = field(default_factory=list)
    possible_recurring_transactions: list = field(default_factory=list)
    plaid_transactions: list = field(default_factory=list)
    recent_transactions: list = field(default_factory=list)
    breakdown: list = field(default_factory=list)
    available: list = field(default_factory=list)
    balances: list = field(default_factory=list)

    @classmethod
    def from_upstream(
        cls,
        *,
        account_id: str,
        today: date,
        built_at: datetime,
        user_data: Any,
        selected_accounts: Any,
        balances: Any,
    ) -> AccountContext:
        first: dict = {}
        if isinstance(selected_accounts, list) and selected_accounts and isinstance(selected_accounts[0], dict):
            first = selected_accounts[0]
        elif isinstance(selected_accounts, dict):
            first = selected_accounts

        forecasted = balances.get("forecasted") if isinstance(balances, dict) else None
        window_start, window_end = add_months(today, -6), add_months(today, 12)
        kept_balances = []
        for entry in forecasted if isinstance(forecasted, list) else []:
            day = parse_day(entry.get("date")) if isinstance(entry, dict) else None
            if day is not None and window_start < day < window_end:
                kept_balances.append(entry)

        return cls(
            account_id=account_id,
            current_date=today.isoformat(),
            built_at=built_at.isoformat(),
            user_data=user_data if isinstance(user_data, dict) else {},
            account={k: v for k, v in first.items() if not isinstance(v, (list, dict))},
            categories=_list_field(first, "categories"),
            shopping_list=_list_field(first, "shoppingList"),
            cf_transactions=_list_field(first, "cfTransactions"),
            upcoming_transactions=_list_field(first, "upcoming"),
            possible_recurring_transactions=_list_field(first, "plaidRecurrings"),
            plaid_transactions=_list_field(first, "plaidTransactions"),
            recent_transactions=_list_field(first, "recents"),
            breakdown=_list_field(first, "breakdown"),
            available=_list_field(first, "available"),
            balances=kept_balances,
        )

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CachedContext:
    cache_key: str
    user_id: str
    account_id: str
    payload: dict
    built_at: datetime
    tier: str = "context"
    cached: bool = False
    age_minutes: int = 0
    persisted: bool = True


@dataclass(frozen=True)
class _Keys:
    user: str
    account: str

    @property
    def context(self) -> str:
        return f"{self.account}:context"

    @property
    def last_updated(self) -> str:
        return f"{self.account}:last_updated"

    @property
    def balances(self) -> str:
        return f"{self.account}:balances"

    @property
    def profile(self) -> str:
        return f"{self.user}:profile"

    def transactions(self, today: date) -> str:
        return f"{self.account}:transactions:{today.isoformat()}"


class ContextCache:
    def __init__(
        self,
        store: KeyValueStore,
        source: ContextDataSource,
        limits: AgentLimits,
        *,
        key_prefix: str = "cfa",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._store = store
        self._source = source
        self._freshness = timedelta(minutes=limits.freshness_minutes)
        self._ttls = limits.cache_ttls
        self._key_prefix = key_prefix
        self._clock = clock

    def _user_key(self, user_id: str) -> str:
        return f"{self._key_prefix}:u:{quote(str(user_id), safe='')}"

    def _keys(self, user_id: str, account_id: str) -> _Keys:
        user = self._user_key(user_id)
        return _Keys(user=user, account=f"{user}:a:{quote(str(account_id), safe='')}")

    async def get(
        self,
        user_id: str,
        account_id: str,
        token: str | None,
        location: dict | None = None,
    ) -> CachedContext | None:
        """Serve fresh cached context or rebuild it. Never raises; None means no context."""
        keys = self._keys(user_id, account_id)

        try:
            raw = await self._store.get(keys.context)
            marker = await self._store.get(keys.last_updated)
        except StoreUnavailable as ex:
            logger.warning(f"Context cache unavailable, building uncached context: {ex}")
            return await self._build_direct(user_id, account_id, token, location, keys)

        now = self._clock()
        if raw and marker:
            hit = self._from_cache(raw, marker, now, user_id, account_id, keys)
            if hit is not None:
                logger.debug(f"Using cached context for user {user_id} account {account_id} (age {hit.age_minutes} min)")
                return hit

        try:
            context = await self._build(user_id, account_id, token, location, keys, use_cache=True)
        except Exception as ex:
            logger.error(f"Context rebuild failed for user {user_id} account {account_id}: {ex!r}")
            return await self._build_direct(user_id, account_id, token, location, keys)

        persisted = await self._write(keys, context)
        return self._entry(context, user_id, account_id, keys, cached=False, persisted=persisted)

    async def warm_up(
        self,
        user_id: str,
        account_id: str,
        token: str | None,
        location: dict | None = None,
    ) -> bool:
        logger.info(f"Warming context cache for user {user_id} account {account_id}")
        return await self.get(user_id, account_id, token, location) is not None

    async def invalidate_user(self, user_id: str) -> int:
        try:
            keys = await self._store.keys(f"{self._user_key(user_id)}:*")
            removed = await self._store.delete(*keys)
        except StoreUnavailable as ex:
            logger.warning(f"Failed to invalidate cache for user {user_id}: {ex}")
            return 0
        logger.info(f"Invalidated {removed} cache entries for user {user_id}")
        return removed

    async def invalidate_account(self, user_id: str, account_id: str) -> int:
        """Drop every account-scoped tier and the freshness marker together."""
        keys = self._keys(user_id, account_id)
        try:
            scoped = await self._store.keys(f"{keys.account}:*")
            removed = await self._store.delete(*scoped)
        except StoreUnavailable as ex:
            logger.warning(f"Failed to invalidate cache for user {user_id} account {account_id}: {ex}")
            return 0
        logger.info(f"Invalidated {removed} cache entries for user {user_id} account {account_id}")
        return removed

    async def stats(self, user_id: str) -> dict:
        try:
            keys = sorted(await self._store.keys(f"{self._user_key(user_id)}:*"))
            entries = []
            total_size = 0
            for key in keys:
                ttl = await self._store.ttl(key)
                value = await self._store.get(key)
                size = len(value.encode("utf-8")) if value else 0
                total_size += size
                entries.append({
                    "key": key,
                    "ttl": ttl if ttl > 0 else "no expiration",
                    "size": size,
                    "size_kb": round(size / 1024, 2),
                })
        except StoreUnavailable as ex:
            return {"error": str(ex)}
        return {
            "total_keys": len(keys),
            "keys": entries,
            "total_size": total_size,
            "total_size_kb": round(total_size / 1024, 2),
            "total_size_mb": round(total_size / (1024 * 1024), 2),
        }

    async def health(self) -> dict:
        probe = f"{self._key_prefix}:health:{int(self._clock().timestamp() * 1000)}"
        try:
            await self._store.set(probe, "ok", 10)
            value = await self._store.get(probe)
            await self._store.delete(probe)
        except StoreUnavailable as ex:
            return {"status": "unhealthy", "error": str(ex)}
        return {"status": "healthy", "test_passed": value == "ok"}

    def _from_cache(
        self,
        raw: str,
        marker: str,
        now: datetime,
        user_id: str,
        account_id: str,
        keys: _Keys,
    ) -> CachedContext | None:
        try:
            age = now - datetime.fromisoformat(marker)
            payload = json.loads(raw)
        except (ValueError, TypeError):
            logger.warning(f"Discarding unreadable cache entry {keys.context}")
            return None
        if age >= self._freshness or not isinstance(payload, dict):
            return None
        return self._entry(
            payload,
            user_id,
            account_id,
            keys,
            cached=True,
            age_minutes=int(age.total_seconds() // 60),
        )

    def _entry(
        self,
        payload: dict,
        user_id: str,
        account_id: str,
        keys: _Keys,
        *,
        cached: bool,
        age_minutes: int = 0,
        persisted: bool = True,
    ) -> CachedContext:
        return CachedContext(
            cache_key=keys.context,
            user_id=str(user_id),
            account_id=str(account_id),
            payload=payload,
            built_at=datetime.fromisoformat(payload["built_at"]),
            cached=cached,
            age_minutes=age_minutes,
            persisted=persisted,
        )

    async def _build_direct(
        self,
        user_id: str,
        account_id: str,
        token: str | None,
        location: dict | None,
        keys: _Keys,
    ) -> CachedContext | None:
        try:
            context = await self._build(user_id, account_id, token, location, keys, use_cache=False)
        except Exception as ex:
            logger.error(f"Direct context build failed for user {user_id} account {account_id}: {ex!r}")
            return None
        return self._entry(context, user_id, account_id, keys, cached=False, persisted=False)

    async def _build(
        self,
        user_id: str,
        account_id: str,
        token: str | None,
        location: dict | None,
        keys: _Keys,
        *,
        use_cache: bool,
    ) -> dict:
        now = self._clock()
        today = current_date_for(location, now)

        user_data = await self._tiered(
            keys.profile,
            self._ttls.profile,
            lambda: self._source.get_user_data(user_id, token),
            use_cache,
        )
        body = layout_request(today, [account_id], user_data)
        selected = await self._tiered(
            keys.transactions(today),
            self._ttls.transactions,
            lambda: self._source.get_selected_accounts(user_id, token, body),
            use_cache,
        )
        balances = await self._tiered(
            keys.balances,
            self._ttls.balances,
            lambda: self._source.get_balances(user_id, account_id, token),
            use_cache,
        )

        context = AccountContext.from_upstream(
            account_id=str(account_id),
            today=today,
            built_at=now,
            user_data=user_data,
            selected_accounts=selected,
            balances=balances,
        )
        logger.info(
            f"Built context for user {user_id} account {account_id}: "
            f"{len(context.cf_transactions)} transactions, {len(context.upcoming_transactions)} upcoming, "
            f"{len(context.balances)} balance records"
        )
        return context.as_dict()

    async def _tiered(
        self,
        key: str,
        ttl_seconds: int,
        fetch: Callable[[], Awaitable[Any]],
        use_cache: bool,
    ) -> Any:
        if not use_cache:
            return await fetch()
        try:
            cached = await self._store.get(key)
            if cached is not None:
                return json.loads(cached)
        except (StoreUnavailable, ValueError) as ex:
            logger.warning(f"Cache tier {key} unreadable, calling provider directly: {ex}")
            return await fetch()

        value = await fetch()
        try:
            await self._store.set(key, json.dumps(value, ensure_ascii=False, default=str), ttl_seconds)
        except StoreUnavailable as ex:
            logger.warning(f"Failed to cache tier {key}: {ex}")
        return value

    async def _write(self, keys: _Keys, context: dict) -> bool:
        ttl = self._ttls.context
        try:
            await self._store.set(keys.context, json.dumps(context, ensure_ascii=False, default=str), ttl)
            await self._store.set(keys.last_updated, context["built_at"], ttl)
        except StoreUnavailable as ex:
            logger.warning(f"Failed to cache context {keys.context}: {ex}")
            return False
        return True
