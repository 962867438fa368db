"""Single local entry point for chat completions regardless of upstream format."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Mapping

from ..llm import LLMClient, iter_sse_events
from .stream_transformer import StreamTransformer

logger = logging.getLogger(__name__)


class ChatCompletionProxy:
    """Forward chat-completion bodies to the configured upstream.

    When the upstream speaks the vendor stream format, streamed bodies are
    passed through `StreamTransformer` so callers only ever see normalized
    ``chat.completion.chunk`` events.
    """

    def __init__(self, client: LLMClient, *, vendor_stream: bool = True) -> None:
        self._client = client
        self._vendor_stream = vendor_stream

    @property
    def model(self) -> str:
        return self._client.model

    async def complete(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Return the upstream's buffered JSON response."""

        return await self._client.complete(payload)

    async def open_stream(self, payload: Mapping[str, Any]) -> AsyncIterator[bytes]:
        """Open a streaming completion and return normalized SSE bytes.

        Raises `UpstreamError` before streaming starts when the upstream
        rejects the request or returns an empty body.
        """

        body = await self._client.open_stream(payload)
        if not self._vendor_stream:
            return body
        return StreamTransformer().transform(body)

    async def forward(
        self, payload: Mapping[str, Any]
    ) -> dict[str, Any] | AsyncIterator[bytes]:
        """Branch on the caller's own `stream` flag."""

        if payload.get("stream") is True:
            return await self.open_stream(payload)
        return await self.complete(payload)

    async def stream_chunks(
        self, payload: Mapping[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield parsed chunk objects from a streaming completion, in order."""

        body = await self.open_stream(payload)
        try:
            async for event in iter_sse_events(body):
                data = event.data
                if not data:
                    continue
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON SSE payload: %s", data)
                    continue
                if isinstance(chunk, dict):
                    yield chunk
        finally:
            aclose = getattr(body, "aclose", None)
            if aclose is not None:
                await aclose()

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["ChatCompletionProxy"]
