"""Pydantic models for products, moodboards, and background job payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import TryOnMode


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Product(_CamelModel):
    """Catalog product as returned by search; immutable once created."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    id: str
    name: str
    image_url: str
    buy_link: str = ""
    price: Optional[str] = None
    original_price: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    is_prime: bool = False


class MoodboardItem(Product):
    """Product paired with its try-on composite (or the original image)."""

    try_on_url: str


class Moodboard(_CamelModel):
    id: str
    title: str
    description: str
    items: List[MoodboardItem] = Field(default_factory=list)
    is_auto_generated: bool = False


class MoodboardSummary(_CamelModel):
    title: str
    description: str = ""


class Categorization(_CamelModel):
    """Model decision on where a product selection belongs."""

    action: Literal["ADD_TO_EXISTING", "CREATE_NEW"]
    board_title: str = Field(
        description=(
            'If action is "ADD_TO_EXISTING", the exact title of the board. '
            'If "CREATE_NEW", a new creative title.'
        )
    )
    board_description: str = Field(
        description="A one-sentence description for the mood board."
    )


class SearchDecision(_CamelModel):
    detected_gender: Literal["men", "women", "unisex"] = Field(
        description="The gender context detected from the styling advice"
    )
    queries: List[str] = Field(
        min_length=1,
        max_length=2,
        description=(
            "An array of 1-2 distinct, specific search queries for clothing items, "
            "e.g. 'white linen button-down shirt'."
        ),
    )


class BoardDetails(_CamelModel):
    title: str = Field(
        description="A short, catchy, and creative moodboard title (3-5 words)."
    )
    description: str = Field(
        description="A concise one-sentence description for the moodboard."
    )


class GenerateMoodboardRequest(_CamelModel):
    selected_products: List[Product]
    existing_moodboards: List[MoodboardSummary] = Field(default_factory=list)
    board_id: str = Field(min_length=1)
    try_on_mode: Optional[TryOnMode] = None


class ProactiveStyleRequest(_CamelModel):
    advice_text: Optional[str] = None
    try_on_mode: Optional[TryOnMode] = None
    board_id: Optional[str] = None


class CompletionNotice(_CamelModel):
    """Body accepted by the completion polling endpoint's POST handler."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    board_id: Optional[str] = None
    try_on_url_map: Optional[Dict[str, str]] = None
    categorization: Optional[Dict[str, Any]] = None
    new_board: Optional[Dict[str, Any]] = None

    def record(self) -> Dict[str, Any]:
        """Return the completion record without the routing key."""

        return self.model_dump(
            mode="json", by_alias=True, exclude={"board_id"}, exclude_none=True
        )


__all__ = [
    "BoardDetails",
    "Categorization",
    "CompletionNotice",
    "GenerateMoodboardRequest",
    "Moodboard",
    "MoodboardItem",
    "MoodboardSummary",
    "ProactiveStyleRequest",
    "Product",
    "SearchDecision",
]
