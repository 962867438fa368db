"""Resolve local image references and flatten multimodal history."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..schemas.chat import ChatMessage, ImagePart, ImageURL, TextPart
from ..services.uploads import UploadStorage

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "[Previous message contained an image]"
UNAVAILABLE_IMAGE_TEMPLATE = "[Image unavailable: {name}]"


class MultimodalPreprocessor:
    """Prepare user turns for a model that cannot reach local upload paths."""

    def __init__(self, storage: UploadStorage) -> None:
        self._storage = storage

    async def inline_local_images(
        self, messages: Sequence[ChatMessage]
    ) -> list[ChatMessage]:
        """Return messages whose local image parts are embedded as data URIs.

        An unreadable file is replaced by a short text placeholder so the turn
        proceeds without it.
        """

        prepared: list[ChatMessage] = []
        for message in messages:
            if message.role != "user" or isinstance(message.content, str):
                prepared.append(message)
                continue

            parts: list[TextPart | ImagePart] = []
            for part in message.content:
                if isinstance(part, ImagePart) and self._storage.is_local_reference(
                    part.url
                ):
                    parts.append(await self._resolve(part))
                else:
                    parts.append(part)
            prepared.append(message.model_copy(update={"content": parts}))
        return prepared

    async def _resolve(self, part: ImagePart) -> TextPart | ImagePart:
        reference = part.url
        try:
            data_url = await self._storage.read_data_url(reference)
        except (OSError, ValueError) as exc:
            logger.warning("Could not inline local image %s: %s", reference, exc)
            name = reference.rsplit("/", 1)[-1] or reference
            return TextPart(text=UNAVAILABLE_IMAGE_TEMPLATE.format(name=name))
        logger.debug("Inlined local image %s (%d chars)", reference, len(data_url))
        return ImagePart(image_url=ImageURL(url=data_url))


def latest_image_part(messages: Sequence[ChatMessage]) -> ImagePart | None:
    """Return the first image part of the final message, if any."""

    if not messages:
        return None
    images = messages[-1].image_parts()
    return images[0] if images else None


def message_text(message: ChatMessage) -> str:
    return "\n".join(text for text in message.text_parts() if text).strip()


def flatten_history(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Collapse messages to text-only payloads for a text-only model turn."""

    flattened: list[dict[str, Any]] = []
    for message in messages:
        if isinstance(message.content, str):
            content = message.content
        else:
            content = message_text(message) or IMAGE_PLACEHOLDER
        flattened.append({"role": message.role, "content": content})
    return flattened


__all__ = [
    "IMAGE_PLACEHOLDER",
    "MultimodalPreprocessor",
    "flatten_history",
    "latest_image_part",
    "message_text",
]
