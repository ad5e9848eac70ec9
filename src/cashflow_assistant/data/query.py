from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from cashflow_assistant.errors import DataProviderError, ResourceExhausted

# MySQL: out of sort memory, out of memory, out of memory (thread), table is full.
_MYSQL_RESOURCE_CODES = frozenset({1037, 1038, 1041, 1114})
# PostgreSQL SQLSTATE class 53: insufficient resources.
_PG_RESOURCE_CLASS = "53"


def is_resource_exhausted(ex: BaseException) -> bool:
    """Classify a driver error by its vendor code, never by message text."""
    orig = getattr(ex, "orig", ex)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if isinstance(sqlstate, str) and sqlstate.startswith(_PG_RESOURCE_CLASS):
        return True
    args = getattr(orig, "args", ())
    return bool(args) and isinstance(args[0], int) and args[0] in _MYSQL_RESOURCE_CODES


class SqlQueryRunner:
    """Runs parameterized SQL on a synchronous SQLAlchemy engine off the event loop."""

    def __init__(self, engine: Engine, *, timeout_seconds: float = 15.0):
        self._engine = engine
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 15.0) -> SqlQueryRunner:
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        return cls(engine, timeout_seconds=timeout_seconds)

    async def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        return await self._run(self._fetch_all, sql, params or {})

    async def fetch_one(self, sql: str, params: dict[str, Any] | None = None) -> dict | None:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def fetch_scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        return await self._run(self._fetch_scalar, sql, params or {})

    async def _run(self, fn, sql: str, params: dict[str, Any]) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, sql, params), self._timeout_seconds)
        except TimeoutError as ex:
            raise DataProviderError(f"query timed out after {self._timeout_seconds}s") from ex
        except DBAPIError as ex:
            if is_resource_exhausted(ex):
                raise ResourceExhausted(str(ex.orig)) from ex
            logger.error(f"Query failed: {ex}")
            raise DataProviderError(str(ex)) from ex
        except SQLAlchemyError as ex:
            logger.error(f"Query failed: {ex}")
            raise DataProviderError(str(ex)) from ex

    def _fetch_all(self, sql: str, params: dict[str, Any]) -> list[dict]:
        with self._engine.connect() as conn:
            result = conn.execute(text(sql), params)
            return [dict(row) for row in result.mappings()]

    def _fetch_scalar(self, sql: str, params: dict[str, Any]) -> Any:
        with self._engine.connect() as conn:
            return conn.execute(text(sql), params).scalar()

    def dispose(self) -> None:
        self._engine.dispose()
