"""Stylist chat streaming route."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ..chat import ChatOrchestrator
from ..llm import UpstreamError
from ..schemas.chat import ChatRequest
from .bodies import InvalidRequestBody, parse_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_chat_orchestrator(request: Request) -> ChatOrchestrator:
    orchestrator = getattr(request.app.state, "chat_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Chat orchestrator unavailable")
    return orchestrator


def _error_events(message: str) -> list[dict[str, str]]:
    error_chunk = {"choices": [{"delta": {"content": f"Error: {message}"}}]}
    return [
        {"event": "message", "data": json.dumps(error_chunk)},
        {"event": "message", "data": "[DONE]"},
    ]


@router.post("/chat", response_model=None)
async def stream_chat(
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
) -> Any:
    """Stream the stylist's reply as Server-Sent Events.

    Invalid bodies answer with HTTP 400 ``{"error": ...}``. Failures before
    the first event (image analysis, the first upstream request) answer
    with HTTP 500 ``{"error": ...}``. Later failures are reported in-band
    and the stream is closed with ``[DONE]``.
    """

    try:
        payload = await parse_body(request, ChatRequest)
    except InvalidRequestBody as exc:
        logger.warning("Rejected chat request: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=400)

    try:
        history = await orchestrator.prepare_conversation(payload)
        events = orchestrator.stream_conversation(history)
        first_event = await anext(events)
    except UpstreamError as exc:
        logger.error("Chat upstream failed (%s): %s", exc.status_code, exc.detail_text)
        return JSONResponse({"error": exc.detail_text}, status_code=500)
    except Exception as exc:
        logger.exception("Chat request failed before streaming")
        return JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)

    async def event_publisher() -> AsyncGenerator[dict[str, str], None]:
        try:
            yield first_event
            async for event in events:
                yield event
        except UpstreamError as exc:
            logger.error("Chat stream upstream failure: %s", exc.detail_text)
            for event in _error_events(exc.detail_text):
                yield event
        except Exception as exc:
            logger.exception("Chat stream failed")
            for event in _error_events(str(exc)):
                yield event
        finally:
            await events.aclose()

    return EventSourceResponse(event_publisher())


__all__ = ["get_chat_orchestrator", "router"]
