"""OpenAI-compatible chat-completions passthrough routes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..chat.proxy import ChatCompletionProxy
from ..llm import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["completions"])

_STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def get_completion_proxy(request: Request) -> ChatCompletionProxy:
    proxy = getattr(request.app.state, "completion_proxy", None)
    if proxy is None:
        raise HTTPException(status_code=500, detail="Completion proxy unavailable")
    return proxy


async def _read_json_object(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be valid JSON"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)
    return payload


def _upstream_error_response(exc: UpstreamError) -> JSONResponse:
    logger.error("Upstream API failed (%s): %s", exc.status_code, exc.detail_text)
    return JSONResponse(
        {"error": f"Upstream API failed: {exc.detail_text}"},
        status_code=exc.status_code,
    )


@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(
    request: Request,
    proxy: ChatCompletionProxy = Depends(get_completion_proxy),
) -> Any:
    """Forward a chat-completions body, streaming or buffered per its ``stream`` flag."""

    payload = await _read_json_object(request)
    if isinstance(payload, JSONResponse):
        return payload

    try:
        result = await proxy.forward(payload)
    except UpstreamError as exc:
        return _upstream_error_response(exc)

    if isinstance(result, dict):
        return JSONResponse(result)
    return StreamingResponse(
        result, media_type="text/event-stream", headers=_STREAM_HEADERS
    )


@router.post("/llama-proxy", response_model=None)
async def llama_proxy(
    request: Request,
    proxy: ChatCompletionProxy = Depends(get_completion_proxy),
) -> Any:
    """Always-streaming variant of the passthrough."""

    payload = await _read_json_object(request)
    if isinstance(payload, JSONResponse):
        return payload

    payload["stream"] = True
    try:
        body = await proxy.open_stream(payload)
    except UpstreamError as exc:
        return _upstream_error_response(exc)
    return StreamingResponse(body, media_type="text/event-stream", headers=_STREAM_HEADERS)


__all__ = ["get_completion_proxy", "router"]
