"""Model photo registry route."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..services.model_images import ModelImageStore

router = APIRouter(prefix="/api", tags=["model-images"])


def get_model_image_store(request: Request) -> ModelImageStore:
    store = getattr(request.app.state, "model_image_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Model image store unavailable")
    return store


@router.get("/get-model-images")
async def list_model_images(
    store: ModelImageStore = Depends(get_model_image_store),
) -> dict[str, Any]:
    return await store.read_registry()


__all__ = ["get_model_image_store", "router"]
