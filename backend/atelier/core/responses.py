"""Standardized API response helpers.

Every endpoint answers with a ``success`` flag so callers can branch on a
single key, mirroring the envelope used by the error handlers:

    {"success": true, ...payload}
    {"success": false, "message": "..."}

List endpoints add ``items`` and ``total``; paginated ones also add
``skip``, ``limit`` and ``has_more``.
"""

from typing import Any


def success_response(message: str = "", **payload: Any) -> dict:
    """Wrap a payload in the success envelope."""
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(payload)
    return body


def list_response(items: list, total: int | None = None) -> dict:
    """Wrap a full list in the standard envelope."""
    return {
        "success": True,
        "items": items,
        "total": total if total is not None else len(items),
    }


def paginated_response(
    items: list,
    total: int,
    skip: int = 0,
    limit: int = 50,
) -> dict:
    """Wrap a page of results in the standard envelope.

    Returns:
        {"success": True, "items": items, "total": total, "skip": skip,
         "limit": limit, "has_more": bool}
    """
    return {
        "success": True,
        "items": items,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": (skip + len(items)) < total,
    }
