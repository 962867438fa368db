"""Translate the Llama API completion stream into chat-completion chunks."""

from __future__ import annotations

import codecs
import json
import logging
import time
from typing import Any, AsyncGenerator, AsyncIterable, Callable

logger = logging.getLogger(__name__)

_EVENT_SEPARATOR = "\n\n"
_DATA_PREFIX = "data: "
_DONE = "[DONE]"


class StreamTransformer:
    """Incrementally convert vendor SSE bytes to normalized chunk SSE bytes.

    The upstream emits events shaped like
    ``{"id", "model", "completion_message": {"content": {"text"}, "stop_reason",
    "tool_calls"}}``. Each complete ``data: ...\\n\\n`` event becomes exactly one
    ``chat.completion.chunk`` event, in upstream order. Input may be split at
    any byte boundary; nothing is parsed until the separator has arrived.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[bytes]:
        """Consume raw bytes and return every normalized event now complete."""

        self._buffer += self._decoder.decode(data)
        output: list[bytes] = []
        while True:
            index = self._buffer.find(_EVENT_SEPARATOR)
            if index == -1:
                break
            event_text = self._buffer[:index]
            self._buffer = self._buffer[index + len(_EVENT_SEPARATOR) :]
            encoded = self._transform_event(event_text)
            if encoded is not None:
                output.append(encoded)
        return output

    def flush(self) -> None:
        """Discard whatever partial event is left when the upstream ends."""

        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            logger.warning(
                "Discarding incomplete upstream event at end of stream: %r",
                self._buffer[:200],
            )
        else:
            logger.debug("Upstream stream flushed")
        self._buffer = ""

    async def transform(
        self, source: AsyncIterable[bytes]
    ) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in source:
                for event in self.feed(chunk):
                    yield event
            self.flush()
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    def _transform_event(self, event_text: str) -> bytes | None:
        if not event_text.startswith(_DATA_PREFIX):
            return None

        raw = event_text[len(_DATA_PREFIX) :]
        if raw.strip() == _DONE:
            return f"{_DATA_PREFIX}{_DONE}{_EVENT_SEPARATOR}".encode("utf-8")

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Dropping malformed upstream event (%s): %r", exc, raw[:200])
            return None
        if not isinstance(payload, dict):
            logger.warning("Dropping non-object upstream event: %r", raw[:200])
            return None

        chunk = self.normalize(payload)
        return (
            f"{_DATA_PREFIX}{json.dumps(chunk)}{_EVENT_SEPARATOR}".encode("utf-8")
        )

    def normalize(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Map one vendor event object onto a chat-completion chunk."""

        message = payload.get("completion_message")
        if not isinstance(message, dict):
            message = {}
        stop_reason = message.get("stop_reason")
        content = message.get("content")
        text = content.get("text") if isinstance(content, dict) else None

        if stop_reason == "tool_calls":
            delta: dict[str, Any] = {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    _normalize_tool_call(index, call)
                    for index, call in enumerate(message.get("tool_calls") or [])
                    if isinstance(call, dict)
                ],
            }
            finish_reason: Any = "tool_calls"
        elif isinstance(text, str) and text:
            delta = {"content": text}
            finish_reason = stop_reason
        else:
            delta = {}
            finish_reason = stop_reason

        return {
            "id": payload.get("id"),
            "object": "chat.completion.chunk",
            "created": int(self._clock()),
            "model": payload.get("model"),
            "choices": [
                {"index": 0, "delta": delta, "finish_reason": finish_reason}
            ],
        }


def _normalize_tool_call(index: int, call: dict[str, Any]) -> dict[str, Any]:
    function = call.get("function") if isinstance(call.get("function"), dict) else {}
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return {
        "index": index,
        "id": call.get("id"),
        "type": "function",
        "function": {
            "name": function.get("name"),
            "arguments": arguments or "",
        },
    }


__all__ = ["StreamTransformer"]
