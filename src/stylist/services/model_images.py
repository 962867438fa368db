"""Registry of model photos used as the base image for try-on generation."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class ModelImage(BaseModel):
    """One uploaded model photo and its validation outcome."""

    id: str
    url: str
    status: str = "pending"
    reason: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


class ModelImageStore:
    """Read the JSON registry of model photos.

    The registry is written by the upload/validation flow; this store only
    reads it, re-loading the file on each call so fresh approvals are seen.
    """

    def __init__(
        self,
        path: Path,
        *,
        chooser: Callable[[Sequence[ModelImage]], ModelImage] = random.choice,
    ) -> None:
        self._path = path
        self._chooser = chooser
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_from_disk(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("Model image registry %s not found; using empty list", self._path)
            return {"images": []}

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Model image registry %s is not valid JSON: %s", self._path, exc)
            return {"images": []}
        if not isinstance(payload, dict) or not isinstance(payload.get("images"), list):
            logger.warning("Model image registry %s has no images list", self._path)
            return {"images": []}
        return payload

    async def read_registry(self) -> dict[str, Any]:
        """Return the raw registry document (``{"images": []}`` when absent)."""

        async with self._lock:
            return await asyncio.to_thread(self._load_from_disk)

    async def list_images(self) -> list[ModelImage]:
        payload = await self.read_registry()
        images: list[ModelImage] = []
        for item in payload["images"]:
            try:
                images.append(ModelImage.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed model image entry %r: %s", item, exc)
        return images

    async def random_approved_url(self) -> str | None:
        """Return the URL of a randomly chosen approved photo, if any exist."""

        approved = [image for image in await self.list_images() if image.is_approved]
        if not approved:
            return None
        return self._chooser(approved).url


__all__ = ["ModelImage", "ModelImageStore"]
