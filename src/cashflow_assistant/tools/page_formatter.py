from __future__ import annotations

from cashflow_assistant.data.paging import CountFallback, PageResult

# Default page sizes per listing.
SMART_LIMITS = {
    "accounts": 20,
    "transactions": 50,
    "forecasts": 25,
    "upcoming": 30,
}


def page_payload(result: PageResult | CountFallback, key: str, noun: str) -> dict:
    if isinstance(result, CountFallback):
        payload = {
            key: [],
            "message": result.message,
            "total_count": result.total,
            "error": "Memory limit exceeded",
        }
        payload.update(result.details)
        return payload

    payload = {key: result.items, "pagination": result.pagination()}
    if result.page == 1 and result.total > result.limit:
        payload["message"] = (
            f"Retrieved {len(result.items)} of {result.total} {noun}. "
            f"Use pagination (page/limit) for more {noun}."
        )
    return payload


def page_schema_properties(default_limit: int) -> dict:
    return {
        "page": {"type": "integer", "description": "Page number, starting at 1 (default 1)"},
        "limit": {"type": "integer", "description": f"Rows per page (default {default_limit}, max 500)"},
    }
