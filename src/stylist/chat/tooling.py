"""Stylist persona, the product search tool, and tool-call stream helpers."""

from __future__ import annotations

import logging
from typing import Any

from ..schemas.chat import SearchProductsArguments

logger = logging.getLogger(__name__)

SEARCH_PRODUCTS_TOOL_NAME = "searchProducts"

STYLIST_SYSTEM_PROMPT = """You are "Chad", a friendly and enthusiastic AI fashion stylist. Your goal is to help the user discover new clothing items.
- When a request names a specific kind of clothing (an item type, style, color, or occasion), use the 'searchProducts' tool immediately. Do not invent products.
- When a request is too vague to search well, ask one or two short clarifying questions first (for example about occasion, budget, fit, or color).
- If a message includes an [Image Analysis: ...] section, use that assessment of skin tone, body shape, and outfit to tailor your advice and searches.
- After the 'searchProducts' tool returns results, you MUST present them to the user with a friendly, conversational introduction, for example: 'Awesome, check out these streetwear options I found for you!'
- If the tool returns no products, tell the user nothing matched and suggest a different search. Do not end the turn silently after a tool call. Always provide a text message."""

IMAGE_ANALYSIS_PROMPT = """You are a professional fashion stylist. Analyze this photo and describe, in a few concise sentences:
1. The person's apparent skin tone and undertone, and which colors would flatter it.
2. Their body shape and which silhouettes and fits would suit it.
3. The outfit they are wearing now: key pieces, colors, and overall style.
Be specific, positive, and practical. Do not recommend specific products yet."""

SEARCH_PRODUCTS_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_PRODUCTS_TOOL_NAME,
        "description": (
            "Searches the product catalog for clothing items based on a user query, "
            'such as style, color, or item type (e.g., "pants", "streetwear fits", '
            '"korean minimal shirt").'
        ),
        "parameters": SearchProductsArguments.model_json_schema(),
    },
}


def build_search_query(arguments: SearchProductsArguments) -> str:
    """Fold the optional item type into the catalog query text."""

    query = arguments.query.strip()
    item_type = (arguments.itemType or "").strip()
    if item_type and item_type.lower() not in query.lower():
        return f"{query} {item_type}"
    return query


def merge_tool_calls(
    accumulator: list[dict[str, Any]],
    deltas: Any,
) -> None:
    """Fold streamed tool-call deltas into ``accumulator`` in place.

    Normalized chunks number every call with ``index``; the first delta for a
    slot brings the call id and function name, later ones only append argument
    text. Deltas without a usable index are dropped.
    """

    for delta in deltas or []:
        index = delta.get("index") if isinstance(delta, dict) else None
        if not isinstance(index, int) or index < 0:
            logger.debug("Dropping tool-call delta without an index: %r", delta)
            continue

        while len(accumulator) <= index:
            accumulator.append(
                {"id": None, "type": "function", "function": {"name": None, "arguments": ""}}
            )
        call = accumulator[index]
        if delta.get("id"):
            call["id"] = delta["id"]

        function = delta.get("function")
        if not isinstance(function, dict):
            continue
        if function.get("name"):
            call["function"]["name"] = function["name"]
        call["function"]["arguments"] += function.get("arguments") or ""


def finalize_tool_calls(
    tool_calls: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Return the named calls with stable ids, ready to echo back upstream."""

    finalized: list[dict[str, Any]] = []
    for index, call in enumerate(tool_calls):
        if not isinstance(call, dict):
            continue

        function = call.get("function") or {}
        if not isinstance(function, dict):
            function = {}

        name = function.get("name")
        if not (isinstance(name, str) and name.strip()):
            continue
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = ""

        finalized.append(
            {
                "id": call.get("id") or f"call_{index}",
                "type": call.get("type") or "function",
                "function": {"name": name, "arguments": arguments},
            }
        )
    return finalized


__all__ = [
    "IMAGE_ANALYSIS_PROMPT",
    "SEARCH_PRODUCTS_TOOL",
    "SEARCH_PRODUCTS_TOOL_NAME",
    "STYLIST_SYSTEM_PROMPT",
    "build_search_query",
    "finalize_tool_calls",
    "merge_tool_calls",
]
