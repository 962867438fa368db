from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from stylist.chat.multimodal import (
    IMAGE_PLACEHOLDER,
    MultimodalPreprocessor,
    flatten_history,
    latest_image_part,
)
from stylist.schemas.chat import ChatMessage, ImagePart, TextPart
from stylist.services.uploads import UploadStorage, guess_image_mime_type


def _message(role: str, *parts: dict) -> ChatMessage:
    return ChatMessage.model_validate({"role": role, "content": list(parts)})


def _image(url: str) -> dict:
    return {"type": "image_url", "image_url": {"url": url}}


def _text(text: str) -> dict:
    return {"type": "text", "text": text}


@pytest.fixture
def storage(tmp_path: Path) -> UploadStorage:
    return UploadStorage(tmp_path, url_prefix="/uploads/")


@pytest.mark.asyncio
async def test_local_upload_is_inlined_as_data_uri(storage: UploadStorage, tmp_path: Path) -> None:
    (tmp_path / "look.png").write_bytes(b"\x89PNGdata")
    preprocessor = MultimodalPreprocessor(storage)

    [message] = await preprocessor.inline_local_images(
        [_message("user", _text("what do you think?"), _image("/uploads/look.png"))]
    )

    text_part, image_part = message.content
    assert isinstance(text_part, TextPart)
    assert isinstance(image_part, ImagePart)
    expected = base64.b64encode(b"\x89PNGdata").decode("ascii")
    assert image_part.url == f"data:image/png;base64,{expected}"


@pytest.mark.asyncio
async def test_remote_and_data_urls_are_left_alone(storage: UploadStorage) -> None:
    storage.read_data_url = AsyncMock()  # type: ignore[method-assign]
    preprocessor = MultimodalPreprocessor(storage)
    original = _message(
        "user",
        _image("https://cdn.example.com/shirt.jpg"),
        _image("data:image/jpeg;base64,AAAA"),
    )

    [message] = await preprocessor.inline_local_images([original])

    assert message.content == original.content
    storage.read_data_url.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_file_becomes_text_placeholder(storage: UploadStorage) -> None:
    preprocessor = MultimodalPreprocessor(storage)

    [message] = await preprocessor.inline_local_images(
        [_message("user", _text("rate my fit"), _image("/uploads/gone.jpg"))]
    )

    assert message.image_parts() == []
    assert message.text_parts() == ["rate my fit", "[Image unavailable: gone.jpg]"]
    assert all(
        not (isinstance(part, ImagePart) and part.url.startswith("/uploads/"))
        for part in message.content
    )


@pytest.mark.asyncio
async def test_assistant_and_plain_text_messages_are_untouched(storage: UploadStorage) -> None:
    preprocessor = MultimodalPreprocessor(storage)
    messages = [
        ChatMessage(role="assistant", content="Hello!"),
        ChatMessage(role="user", content="/uploads/not-an-image-part.png"),
    ]

    assert await preprocessor.inline_local_images(messages) == messages


def test_latest_image_part_only_inspects_final_message() -> None:
    earlier = _message("user", _image("https://cdn.example.com/a.jpg"))
    latest = ChatMessage(role="user", content="just text")

    assert latest_image_part([earlier, latest]) is None
    assert latest_image_part([latest, earlier]).url == "https://cdn.example.com/a.jpg"
    assert latest_image_part([]) is None


def test_flatten_history_keeps_text_or_uses_placeholder() -> None:
    messages = [
        _message("user", _image("data:image/png;base64,AAAA")),
        ChatMessage(role="assistant", content="Love it."),
        _message("user", _text("first"), _image("data:image/png;base64,AAAA"), _text("second")),
    ]

    assert flatten_history(messages) == [
        {"role": "user", "content": IMAGE_PLACEHOLDER},
        {"role": "assistant", "content": "Love it."},
        {"role": "user", "content": "first\nsecond"},
    ]


def test_mime_type_is_inferred_from_extension() -> None:
    assert guess_image_mime_type("/uploads/a.PNG") == "image/png"
    assert guess_image_mime_type("/uploads/a.webp?v=2") == "image/webp"
    assert guess_image_mime_type("/uploads/a.jpeg") == "image/jpeg"
    assert guess_image_mime_type("/uploads/a.heic") == "image/jpeg"


def test_upload_paths_cannot_escape_root(storage: UploadStorage, tmp_path: Path) -> None:
    assert storage.path_for("/uploads/../../etc/passwd") == tmp_path / "passwd"
