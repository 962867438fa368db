"""Per-request conversation driver for the stylist chat endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

from pydantic import ValidationError

from ..llm import UpstreamError, extract_completion_text
from ..schemas.chat import ChatRequest, ImagePart, SearchProductsArguments
from ..services.product_search import ProductSearchClient, ProductSearchError
from .multimodal import (
    MultimodalPreprocessor,
    flatten_history,
    latest_image_part,
    message_text,
)
from .proxy import ChatCompletionProxy
from .tooling import (
    IMAGE_ANALYSIS_PROMPT,
    SEARCH_PRODUCTS_TOOL,
    SEARCH_PRODUCTS_TOOL_NAME,
    STYLIST_SYSTEM_PROMPT,
    build_search_query,
    finalize_tool_calls,
    merge_tool_calls,
)

logger = logging.getLogger(__name__)

SseEvent = dict[str, str]


class ChatOrchestrationError(RuntimeError):
    """Raised when a chat turn cannot be prepared."""


class ChatOrchestrator:
    """Drive one chat request from raw history to a streamed, tool-resolved reply.

    A turn whose latest message carries an image is first analysed by a
    single buffered completion; the analysis is folded into a text-only
    history. Either way the reply is streamed with the `searchProducts` tool
    registered, and every tool call the model emits is executed and fed back
    before the next model hop.
    """

    def __init__(
        self,
        proxy: ChatCompletionProxy,
        preprocessor: MultimodalPreprocessor,
        product_search: ProductSearchClient,
        *,
        tool_hop_limit: int = 8,
    ) -> None:
        self._proxy = proxy
        self._preprocessor = preprocessor
        self._product_search = product_search
        self._tool_hop_limit = tool_hop_limit

    async def prepare_conversation(self, request: ChatRequest) -> list[dict[str, Any]]:
        """Return the text-only history the streamed completion will run on.

        Raises `ChatOrchestrationError` when image analysis fails.
        """

        messages = await self._preprocessor.inline_local_images(request.messages)
        image = latest_image_part(messages)
        if image is None:
            return flatten_history(messages)

        user_text = message_text(messages[-1])
        logger.info("Latest message carries an image; running analysis first")
        analysis = await self.analyze_image(image, user_text)

        history = flatten_history(messages[:-1])
        history.append(
            {
                "role": "user",
                "content": f"{user_text}\n\n[Image Analysis: {analysis}]",
            }
        )
        return history

    async def analyze_image(self, image: ImagePart, user_text: str = "") -> str:
        instruction = IMAGE_ANALYSIS_PROMPT
        if user_text:
            instruction = f"{instruction}\n\nThe user's message: {user_text}"
        payload = {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": instruction},
                        {"type": "image_url", "image_url": {"url": image.url}},
                    ],
                }
            ],
            "stream": False,
        }
        try:
            response = await self._proxy.complete(payload)
        except UpstreamError as exc:
            logger.error("Image analysis failed (%s): %s", exc.status_code, exc.detail_text)
            raise ChatOrchestrationError(f"Image analysis failed: {exc.detail_text}") from exc

        analysis = extract_completion_text(response)
        if not analysis:
            raise ChatOrchestrationError("Image analysis returned no text")
        logger.debug("Image analysis: %s", analysis)
        return analysis

    async def stream_conversation(
        self, history: list[dict[str, Any]]
    ) -> AsyncGenerator[SseEvent, None]:
        """Yield SSE events for the streamed reply, resolving tool calls between hops.

        Once the hop limit is reached the pending calls are answered with an
        error result and the model gets one last turn without tools, so the
        user still receives a written reply.
        """

        conversation: list[dict[str, Any]] = [
            {"role": "system", "content": STYLIST_SYSTEM_PROMPT},
            *history,
        ]
        hop_count = 0
        tools_enabled = True

        while True:
            payload: dict[str, Any] = {"messages": conversation, "stream": True}
            if tools_enabled:
                payload["tools"] = [SEARCH_PRODUCTS_TOOL]
                payload["tool_choice"] = "auto"
            streamed_tool_calls: list[dict[str, Any]] = []
            content_fragments: list[str] = []

            async for chunk in self._proxy.stream_chunks(payload):
                for choice in chunk.get("choices") or []:
                    if not isinstance(choice, dict):
                        continue
                    delta = choice.get("delta") or {}
                    content = delta.get("content")
                    if isinstance(content, str):
                        content_fragments.append(content)
                    tool_deltas = delta.get("tool_calls")
                    if tools_enabled and tool_deltas:
                        merge_tool_calls(streamed_tool_calls, tool_deltas)
                yield {"event": "message", "data": json.dumps(chunk)}

            tool_calls = finalize_tool_calls(streamed_tool_calls)
            assistant_message: dict[str, Any] = {
                "role": "assistant",
                "content": "".join(content_fragments) or None,
            }
            if tool_calls:
                assistant_message["tool_calls"] = tool_calls
            conversation.append(assistant_message)

            if not tool_calls:
                break

            if hop_count >= self._tool_hop_limit:
                warning = "Tool execution stopped after hop limit"
                logger.warning("%s (%d hops)", warning, hop_count)
                for call in tool_calls:
                    conversation.append(
                        {"role": "tool", "tool_call_id": call["id"], "content": warning}
                    )
                    yield _tool_event(
                        "error", call["function"]["name"], call["id"], warning
                    )
                tools_enabled = False
                continue

            for call in tool_calls:
                tool_name = call["function"]["name"]
                tool_id = call["id"]
                yield _tool_event("started", tool_name, tool_id)

                status, result_text, products = await self._execute_tool(
                    tool_name, call["function"]["arguments"]
                )
                conversation.append(
                    {"role": "tool", "tool_call_id": tool_id, "content": result_text}
                )
                yield _tool_event(status, tool_name, tool_id, result_text, products)

            hop_count += 1

        yield {"event": "message", "data": "[DONE]"}

    async def _execute_tool(
        self, tool_name: str, arguments_raw: str
    ) -> tuple[str, str, list[dict[str, Any]] | None]:
        if tool_name != SEARCH_PRODUCTS_TOOL_NAME:
            logger.warning("Model requested unknown tool %s", tool_name)
            return "error", f"Unknown tool: {tool_name}", None

        if not arguments_raw.strip():
            return "error", f"Tool {tool_name} requires arguments but none were provided.", None

        try:
            arguments = SearchProductsArguments.model_validate_json(arguments_raw)
        except ValidationError as exc:
            logger.warning("Invalid %s arguments %r: %s", tool_name, arguments_raw, exc)
            return "error", f"Invalid arguments for {tool_name}: {exc.error_count()} error(s)", None

        query = build_search_query(arguments)
        try:
            products = await self._product_search.search(query)
        except ProductSearchError as exc:
            logger.warning("Product search for %r failed: %s", query, exc)
            return "error", f"Tool error: {exc}", None

        payload = [product.to_wire() for product in products]
        logger.info("searchProducts(%r) returned %d products", query, len(payload))
        return "finished", json.dumps(payload), payload


def _tool_event(
    status: str,
    name: str,
    call_id: str,
    result: str | None = None,
    products: list[dict[str, Any]] | None = None,
) -> SseEvent:
    data: dict[str, Any] = {"status": status, "name": name, "call_id": call_id}
    if result is not None:
        data["result"] = result
    if products is not None:
        data["products"] = products
    return {"event": "tool", "data": json.dumps(data)}


__all__ = ["ChatOrchestrationError", "ChatOrchestrator"]
