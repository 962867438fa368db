"""Unattended moodboard creation from free-form styling advice."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import TryOnMode
from ..llm import LLMClient
from ..schemas.moodboard import BoardDetails, Moodboard, MoodboardItem, SearchDecision
from ..services.product_search import ProductSearchClient, ProductSearchError
from .broker import CompletionStore
from .moodboard import MoodboardAssembler

logger = logging.getLogger(__name__)

MAX_BOARD_PRODUCTS = 2

SEARCH_DECISION_SYSTEM_PROMPT = (
    "You are a fashion assistant. Your job is to read styling advice and extract 1-2 "
    "key, specific clothing items to create a style board from. Focus on unique, "
    "actionable items. Always detect the gender context (men/women/unisex) and "
    "include appropriate gender-specific search terms."
)

BOARD_DETAILS_SYSTEM_PROMPT = (
    "You are a creative director who creates catchy titles and descriptions for "
    "fashion mood boards."
)


class ProactiveStylingPipeline:
    """Turn styling advice into a finished moodboard without user action.

    Steps run strictly in order: derive search queries, search the catalog,
    name the board, render try-ons one product at a time, then publish
    ``{"newBoard": ...}`` to the completion store. An empty search result ends
    the run without publishing anything.
    """

    def __init__(
        self,
        *,
        structured_llm: LLMClient,
        product_search: ProductSearchClient,
        assembler: MoodboardAssembler,
        completions: CompletionStore,
    ) -> None:
        self._llm = structured_llm
        self._product_search = product_search
        self._assembler = assembler
        self._completions = completions

    async def derive_search(self, advice_text: str) -> SearchDecision:
        return await self._llm.generate_object(
            SearchDecision,
            system=SEARCH_DECISION_SYSTEM_PROMPT,
            prompt=(
                "Here is the styling advice. Extract the best items for a visual "
                "search and detect the gender context:\n\n"
                "IMPORTANT:\n"
                "- Include gender-specific terms in your search queries "
                '(e.g., "men\'s dress shirt" not just "dress shirt")\n'
                "- Consider typical gendered clothing differences "
                "(e.g., men's vs women's fits, styles)\n\n"
                f"{advice_text}"
            ),
        )

    async def describe_board(
        self, advice_text: str, decision: SearchDecision, product_names: list[str]
    ) -> BoardDetails:
        return await self._llm.generate_object(
            BoardDetails,
            system=BOARD_DETAILS_SYSTEM_PROMPT,
            prompt=(
                "Create a short, catchy title and description for a mood board "
                f"based on these styling elements:\n\n{advice_text}\n\n"
                f"Style context: {decision.detected_gender}\n"
                f"Products found: {', '.join(product_names)}\n\n"
                "The title should be 3-5 words and capture the essence/vibe of the style."
            ),
        )

    async def run(
        self,
        advice_text: str,
        *,
        board_id: str,
        mode: Optional[TryOnMode] = None,
    ) -> Moodboard | None:
        """Build and publish the board; return it, or ``None`` when aborted."""

        decision = await self.derive_search(advice_text)
        query = decision.queries[0]
        logger.info(
            "Proactive board %s: searching for %r (gender context %s)",
            board_id,
            query,
            decision.detected_gender,
        )

        try:
            products = await self._product_search.search(query)
        except ProductSearchError as exc:
            logger.warning("Proactive board %s: search failed, aborting: %s", board_id, exc)
            return None

        selected = products[:MAX_BOARD_PRODUCTS]
        if not selected:
            logger.info("Proactive board %s: no products for %r, aborting", board_id, query)
            return None

        details = await self.describe_board(
            advice_text, decision, [product.name for product in selected]
        )

        items: list[MoodboardItem] = []
        for product in selected:
            try_on_url = await self._assembler.try_on_for_product(product, mode)
            items.append(
                MoodboardItem(**product.model_dump(), try_on_url=try_on_url)
            )

        board = Moodboard(
            id=board_id,
            title=details.title,
            description=details.description,
            items=items,
            is_auto_generated=True,
        )
        await self._completions.put(board_id, {"newBoard": board.to_wire()})
        logger.info("Proactive board %s created with %d item(s)", board_id, len(items))
        return board


__all__ = [
    "BOARD_DETAILS_SYSTEM_PROMPT",
    "MAX_BOARD_PRODUCTS",
    "ProactiveStylingPipeline",
    "SEARCH_DECISION_SYSTEM_PROMPT",
]
