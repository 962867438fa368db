"""Completion polling handshake between background jobs and clients."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..jobs.broker import CompletionStore
from ..schemas.moodboard import CompletionNotice
from .bodies import InvalidRequestBody, parse_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["notifications"])


def get_completion_store(request: Request) -> CompletionStore:
    store = getattr(request.app.state, "completion_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Completion store unavailable")
    return store


@router.post("/notify-try-on-complete", response_model=None)
async def publish_completion(
    request: Request,
    store: CompletionStore = Depends(get_completion_store),
) -> Any:
    try:
        notice = await parse_body(request, CompletionNotice)
    except InvalidRequestBody as exc:
        logger.warning("Rejected completion notice: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=400)

    record = notice.record()
    if not notice.board_id or not record:
        return JSONResponse(
            {"error": "Missing boardId or completion payload"}, status_code=400
        )

    await store.put(notice.board_id, record)
    return {"message": "Notification received"}


@router.get("/notify-try-on-complete", response_model=None)
async def poll_completion(
    board_id: Optional[str] = Query(default=None, alias="boardId"),
    store: CompletionStore = Depends(get_completion_store),
) -> Any:
    """Return ``completed`` with the record (consuming it) or ``processing``."""

    if not board_id:
        return JSONResponse(
            {"error": "Missing boardId query parameter"}, status_code=400
        )
    return await store.take(board_id)


__all__ = ["get_completion_store", "router"]
