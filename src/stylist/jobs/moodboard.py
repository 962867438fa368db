"""Categorize product selections and render their try-on images."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from ..config import TryOnMode
from ..llm import LLMClient
from ..schemas.moodboard import Categorization, MoodboardSummary, Product
from ..services.model_images import ModelImageStore
from .broker import CompletionStore
from .try_on import TryOnJobRunner

logger = logging.getLogger(__name__)

CATEGORIZATION_SYSTEM_PROMPT = (
    "You are a fashion stylist helping organize moodboards. You decide whether to "
    "add products to an existing mood board or create a new one based on style "
    "coherence."
)


def build_categorization_prompt(
    products: Sequence[Product], existing: Sequence[MoodboardSummary]
) -> str:
    boards = "\n".join(f'- "{board.title}": {board.description}' for board in existing)
    names = ", ".join(product.name for product in products)
    return (
        f"You have these existing mood boards:\n{boards or '- None'}\n\n"
        f"You need to categorize these new products: {names}\n\n"
        "Should these products be added to an existing board or create a new board? "
        "If adding to existing, choose the most stylistically similar board and use "
        "its exact title. If creating new, suggest a creative title and description."
    )


class MoodboardAssembler:
    """Decide where a selection belongs and fan out its try-on generations."""

    def __init__(
        self,
        *,
        structured_llm: LLMClient,
        try_on: TryOnJobRunner,
        model_images: ModelImageStore,
        completions: CompletionStore,
        default_mode: TryOnMode = "performance",
    ) -> None:
        self._llm = structured_llm
        self._try_on = try_on
        self._model_images = model_images
        self._completions = completions
        self._default_mode = default_mode

    async def categorize(
        self,
        products: Sequence[Product],
        existing: Sequence[MoodboardSummary],
    ) -> Categorization:
        """Ask the structured-output model for CREATE_NEW or ADD_TO_EXISTING.

        Upstream failures propagate as `UpstreamError`.
        """

        categorization = await self._llm.generate_object(
            Categorization,
            system=CATEGORIZATION_SYSTEM_PROMPT,
            prompt=build_categorization_prompt(products, existing),
        )
        logger.info(
            "Categorized %d product(s): %s %r",
            len(products),
            categorization.action,
            categorization.board_title,
        )
        return categorization

    async def try_on_for_product(
        self, product: Product, mode: Optional[TryOnMode] = None
    ) -> str:
        """Return a try-on reference for one product, or its own image."""

        try:
            model_image_url = await self._model_images.random_approved_url()
            if model_image_url is None:
                logger.warning(
                    "No approved model images for product %s; using original image",
                    product.id,
                )
                return product.image_url
            logger.info("Using model image %s for product %s", model_image_url, product.id)
            return await self._try_on.generate(
                model_image_url, product.image_url, mode or self._default_mode
            )
        except Exception:
            logger.exception("Failed to generate try-on for product %s", product.id)
            return product.image_url

    async def build_try_on_map(
        self, products: Sequence[Product], mode: Optional[TryOnMode] = None
    ) -> dict[str, str]:
        """Run every product's try-on concurrently and key the results by product id."""

        urls = await asyncio.gather(
            *(self.try_on_for_product(product, mode) for product in products)
        )
        return {product.id: url for product, url in zip(products, urls)}

    async def complete_in_background(
        self,
        board_id: str,
        products: Sequence[Product],
        categorization: Categorization,
        mode: Optional[TryOnMode] = None,
    ) -> None:
        logger.info(
            "Starting try-on generation for moodboard %s with mode %s",
            board_id,
            mode or self._default_mode,
        )
        try_on_url_map = await self.build_try_on_map(products, mode)
        await self._completions.put(
            board_id,
            {
                "tryOnUrlMap": try_on_url_map,
                "categorization": categorization.to_wire(),
            },
        )
        logger.info("Try-ons complete for moodboard %s", board_id)


__all__ = [
    "CATEGORIZATION_SYSTEM_PROMPT",
    "MoodboardAssembler",
    "build_categorization_prompt",
]
