"""Moodboard generation routes that hand work off to background jobs."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..jobs.background import BackgroundJobRunner
from ..jobs.moodboard import MoodboardAssembler
from ..jobs.proactive import ProactiveStylingPipeline
from ..llm import UpstreamError
from ..schemas.moodboard import GenerateMoodboardRequest, ProactiveStyleRequest
from .bodies import InvalidRequestBody, parse_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["moodboards"])


def get_moodboard_assembler(request: Request) -> MoodboardAssembler:
    assembler = getattr(request.app.state, "moodboard_assembler", None)
    if assembler is None:
        raise HTTPException(status_code=500, detail="Moodboard assembler unavailable")
    return assembler


def get_proactive_pipeline(request: Request) -> ProactiveStylingPipeline:
    pipeline = getattr(request.app.state, "proactive_pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=500, detail="Proactive pipeline unavailable")
    return pipeline


def get_job_runner(request: Request) -> BackgroundJobRunner:
    runner = getattr(request.app.state, "job_runner", None)
    if runner is None:
        raise HTTPException(status_code=500, detail="Background job runner unavailable")
    return runner


@router.post("/generate-moodboard", response_model=None, status_code=202)
async def generate_moodboard(
    request: Request,
    assembler: MoodboardAssembler = Depends(get_moodboard_assembler),
    jobs: BackgroundJobRunner = Depends(get_job_runner),
) -> Any:
    """Categorize the selection now; render try-ons in the background."""

    try:
        payload = await parse_body(request, GenerateMoodboardRequest)
    except InvalidRequestBody as exc:
        logger.warning("Rejected moodboard request: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=400)

    try:
        categorization = await assembler.categorize(
            payload.selected_products, payload.existing_moodboards
        )
    except UpstreamError as exc:
        logger.error("Moodboard categorization failed: %s", exc.detail_text)
        return JSONResponse({"error": exc.detail_text}, status_code=500)
    except Exception as exc:
        logger.exception("Moodboard generation failed")
        return JSONResponse(
            {"error": str(exc) or "Failed to generate mood board"}, status_code=500
        )

    jobs.spawn(
        assembler.complete_in_background(
            payload.board_id,
            payload.selected_products,
            categorization,
            payload.try_on_mode,
        ),
        name=f"moodboard-{payload.board_id}",
    )
    logger.info("Queued try-on job for board %s", payload.board_id)
    return JSONResponse({"categorization": categorization.to_wire()}, status_code=202)


@router.post("/proactive-style-generator", response_model=None, status_code=202)
async def proactive_style_generator(
    request: Request,
    pipeline: ProactiveStylingPipeline = Depends(get_proactive_pipeline),
    jobs: BackgroundJobRunner = Depends(get_job_runner),
) -> Any:
    """Start an unattended styling run and return the board id to poll."""

    try:
        payload = await parse_body(request, ProactiveStyleRequest)
    except InvalidRequestBody as exc:
        logger.warning("Rejected proactive styling request: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=400)

    advice_text = (payload.advice_text or "").strip()
    if not advice_text:
        return JSONResponse({"error": "Missing adviceText"}, status_code=400)

    board_id = payload.board_id or str(uuid4())
    jobs.spawn(
        pipeline.run(advice_text, board_id=board_id, mode=payload.try_on_mode),
        name=f"proactive-{board_id}",
    )
    return JSONResponse(
        {"message": "Proactive styling process initiated.", "boardId": board_id},
        status_code=202,
    )


__all__ = [
    "get_job_runner",
    "get_moodboard_assembler",
    "get_proactive_pipeline",
    "router",
]
