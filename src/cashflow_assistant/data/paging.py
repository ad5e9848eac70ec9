from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from cashflow_assistant.errors import ResourceExhausted

MAX_PAGE_LIMIT = 500


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 50

    def __post_init__(self):
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if not 1 <= self.limit <= MAX_PAGE_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_LIMIT}, got {self.limit}")

    @classmethod
    def from_args(cls, args: dict, default_limit: int) -> PageRequest:
        """Build from loosely-typed tool arguments; missing or falsy values take defaults."""
        return cls(page=int(args.get("page") or 1), limit=int(args.get("limit") or default_limit))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class PageResult:
    items: list[dict]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


@dataclass
class CountFallback:
    """Returned instead of a page when the store ran out of resources listing rows."""

    total: int
    message: str
    details: dict[str, Any] = field(default_factory=dict)


async def paginate(
    fetch_page: Callable[[PageRequest], Awaitable[list[dict]]],
    fetch_count: Callable[[], Awaitable[int]],
    request: PageRequest,
    noun: str,
) -> PageResult | CountFallback:
    # The count is reused when the listing runs out of resources.
    items, total = await asyncio.gather(fetch_page(request), fetch_count(), return_exceptions=True)
    if isinstance(items, ResourceExhausted):
        logger.warning(f"Listing {noun} exhausted database resources, falling back to count: {items}")
        if isinstance(total, BaseException):
            raise total
        return CountFallback(
            total=int(total),
            message=(
                f"Database memory limit reached. Found {total} {noun} total. "
                f"Please use smaller date ranges or smaller pages."
            ),
        )
    for outcome in (items, total):
        if isinstance(outcome, BaseException):
            raise outcome
    return PageResult(items=list(items), page=request.page, limit=request.limit, total=int(total))
