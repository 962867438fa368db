"""Pydantic models for chat requests and message content."""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImageURL(BaseModel):
    url: str

    model_config = ConfigDict(extra="allow")


class TextPart(BaseModel):
    """Plain text fragment of a multimodal message."""

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """Image fragment referencing an upload path, remote URL, or data URI."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageURL

    @field_validator("image_url", mode="before")
    @classmethod
    def _coerce_plain_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"url": value}
        return value

    @property
    def url(self) -> str:
        return self.image_url.url


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class ChatMessage(BaseModel):
    """A single conversation turn whose content is text or an ordered part list."""

    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    model_config = ConfigDict(extra="ignore")

    def image_parts(self) -> list[ImagePart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ImagePart)]

    def text_parts(self) -> list[str]:
        if isinstance(self.content, str):
            return [self.content]
        return [part.text for part in self.content if isinstance(part, TextPart)]


class ChatRequest(BaseModel):
    """Incoming body for the stylist chat endpoint."""

    messages: List[ChatMessage] = Field(min_length=1)

    model_config = ConfigDict(extra="ignore")


class SearchProductsArguments(BaseModel):
    """Arguments accepted by the `searchProducts` tool."""

    query: str = Field(
        min_length=1,
        description=(
            "The user's search query. Be descriptive. "
            'E.g., "edgy black pants for streetwear".'
        ),
    )
    itemType: Optional[str] = Field(
        default=None,
        description=(
            'Specific item category like "pants", "upper-body", "dress", "jacket".'
        ),
    )


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ContentPart",
    "ImagePart",
    "ImageURL",
    "SearchProductsArguments",
    "TextPart",
]
