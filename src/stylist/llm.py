"""HTTP clients for the chat upstream and the structured-output model."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterator,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

import httpx
from fastapi import status
from pydantic import BaseModel, ValidationError

from .config import Settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class UpstreamError(Exception):
    """Wrap transport or API failures when communicating with a model upstream."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail

    @property
    def detail_text(self) -> str:
        if isinstance(self.detail, str):
            return self.detail
        return json.dumps(self.detail)


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class LLMClient:
    """Client for one OpenAI-shaped `/chat/completions` upstream."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        timeout: float = 120.0,
        referer: str | None = None,
        title: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._referer = referer
        self._title = title
        self._client = http_client
        self._owns_client = http_client is None
        self._client_lock = asyncio.Lock()

    @classmethod
    def for_chat(cls, settings: Settings) -> "LLMClient":
        return cls(
            base_url=str(settings.llm_base_url),
            api_key=settings.llm_api_key.get_secret_value(),
            model=settings.chat_model,
            timeout=settings.request_timeout,
        )

    @classmethod
    def for_structured_output(cls, settings: Settings) -> "LLMClient":
        api_key = settings.structured_api_key
        return cls(
            base_url=str(settings.structured_base_url),
            api_key=api_key.get_secret_value() if api_key is not None else None,
            model=settings.structured_model,
            timeout=settings.request_timeout,
            referer=settings.public_app_url,
            title=settings.app_title,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                timeout = httpx.Timeout(self._timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                self._client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if self._referer:
            headers["HTTP-Referer"] = self._referer
            headers["Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def complete(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Send a buffered (non-streaming) completion request and return its JSON."""

        body = dict(payload)
        body.setdefault("model", self.model)
        body["stream"] = False

        client = await self._get_http_client()
        try:
            response = await client.post(
                self.completions_url, headers=self._headers, json=body
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise UpstreamError(response.status_code, detail)

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def open_stream(self, payload: Mapping[str, Any]) -> AsyncIterator[bytes]:
        """Start a streaming completion and return an iterator over raw body bytes.

        Upstream failures are raised here, before any byte is handed back, so
        callers can still answer with a proper status code. The returned
        iterator owns the response and releases it when exhausted or closed.
        """

        body = dict(payload)
        body.setdefault("model", self.model)
        body["stream"] = True

        headers = dict(self._headers)
        headers["Accept"] = "text/event-stream"

        client = await self._get_http_client()
        request = client.build_request(
            "POST", self.completions_url, headers=headers, json=body
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                raw = await response.aread()
            finally:
                await response.aclose()
            raise UpstreamError(response.status_code, self._extract_error_detail(raw))

        chunks = response.aiter_bytes()
        try:
            first = await anext(chunks)
        except StopAsyncIteration:
            await response.aclose()
            raise UpstreamError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "The response body is empty for streaming.",
            ) from None
        except httpx.HTTPError as exc:
            await response.aclose()
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        return self._relay(response, first, chunks)

    @staticmethod
    async def _relay(
        response: httpx.Response,
        first: bytes,
        rest: AsyncIterator[bytes],
    ) -> AsyncGenerator[bytes, None]:
        try:
            yield first
            async for chunk in rest:
                yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        finally:
            await response.aclose()

    async def generate_object(
        self,
        schema: type[ModelT],
        *,
        system: str,
        prompt: str,
        temperature: float | None = None,
    ) -> ModelT:
        """Ask the model for a JSON object and validate it against `schema`."""

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(by_alias=True),
                },
            },
        }
        if temperature is not None:
            payload["temperature"] = temperature

        body = await self.complete(payload)
        text = extract_completion_text(body)
        if not text:
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY, "Model response missing content"
            )
        cleaned = _JSON_FENCE_RE.sub("", text.strip())
        try:
            return schema.model_validate_json(cleaned)
        except ValidationError as exc:
            logger.warning(
                "Structured output did not match %s: %s", schema.__name__, cleaned
            )
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY,
                f"Model returned an invalid {schema.__name__} object: {exc.error_count()} error(s)",
            ) from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass
            self._client = None

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Upstream returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


def extract_completion_text(payload: Mapping[str, Any]) -> str:
    """Return assistant text from an OpenAI or Llama-style completion body."""

    completion_message = payload.get("completion_message")
    if isinstance(completion_message, Mapping):
        content = completion_message.get("content")
        if isinstance(content, Mapping):
            text = content.get("text")
            return text.strip() if isinstance(text, str) else ""
        if isinstance(content, str):
            return content.strip()

    choices = payload.get("choices")
    if not isinstance(choices, Sequence) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, Mapping):
        return ""
    message = first.get("message")
    if not isinstance(message, Mapping):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, Sequence):
        fragments: list[str] = []
        for item in content:
            if not isinstance(item, Mapping):
                continue
            if item.get("type") == "text" and isinstance(item.get("text"), str):
                fragments.append(item["text"])
        return "".join(fragments).strip()
    return ""


async def iter_sse_events(
    source: AsyncIterator[bytes],
) -> AsyncGenerator[ServerSentEvent, None]:
    """Parse a byte stream of Server-Sent Events."""

    buffer: list[str] = []
    pending = ""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in source:
        pending += decoder.decode(chunk)
        *lines, pending = pending.split("\n")
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if not line:
                if buffer:
                    yield _parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
    pending += decoder.decode(b"", final=True)
    if pending.strip():
        buffer.append(pending.rstrip("\r"))
    if buffer:
        yield _parse_event(buffer)


def _parse_event(lines: Iterable[str]) -> ServerSentEvent:
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    data_lines: list[str] = []

    for line in lines:
        field, _, value = line.partition(":")
        value = value.lstrip(" ")
        if field == "event":
            event_name = value or None
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value or None

    data = "\n".join(data_lines)
    return ServerSentEvent(data=data, event=event_name or "message", event_id=event_id)


__all__ = [
    "LLMClient",
    "ServerSentEvent",
    "UpstreamError",
    "extract_completion_text",
    "iter_sse_events",
]
