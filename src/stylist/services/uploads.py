"""Locally stored images addressed by their public `/uploads/...` reference."""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path, PurePosixPath
from uuid import uuid4

logger = logging.getLogger(__name__)

_MIME_BY_SUFFIX = {
    ".png": "image/png",
    ".webp": "image/webp",
}
_DEFAULT_MIME = "image/jpeg"


def guess_image_mime_type(reference: str) -> str:
    """Infer an image MIME type from a file extension (JPEG by default)."""

    suffix = PurePosixPath(reference.split("?", 1)[0]).suffix.lower()
    return _MIME_BY_SUFFIX.get(suffix, _DEFAULT_MIME)


class UploadStorage:
    """Map public upload references to files under a local directory."""

    def __init__(self, root: Path, *, url_prefix: str = "/uploads/") -> None:
        self._root = root
        self._prefix = url_prefix if url_prefix.endswith("/") else f"{url_prefix}/"

    @property
    def url_prefix(self) -> str:
        return self._prefix

    def is_local_reference(self, reference: str) -> bool:
        return isinstance(reference, str) and reference.startswith(self._prefix)

    def path_for(self, reference: str) -> Path:
        """Return the file backing a local reference.

        Only the final path component is honoured so references cannot
        escape the uploads directory.
        """

        name = PurePosixPath(reference.split("?", 1)[0]).name
        if not name:
            raise ValueError(f"Invalid upload reference: {reference!r}")
        return self._root / name

    def reference_for(self, filename: str) -> str:
        return f"{self._prefix}{filename}"

    async def read_bytes(self, reference: str) -> bytes:
        return await asyncio.to_thread(self.path_for(reference).read_bytes)

    async def read_data_url(self, reference: str) -> str:
        """Return the referenced file as a base64 `data:` URI."""

        data = await self.read_bytes(reference)
        mime_type = guess_image_mime_type(reference)
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    async def save_bytes(self, data: bytes, *, prefix: str, suffix: str = ".png") -> str:
        """Persist bytes under a fresh unique filename and return its reference."""

        filename = f"{prefix}-{uuid4()}{suffix}"
        path = self._root / filename

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        reference = self.reference_for(filename)
        logger.info("Saved %d bytes to %s", len(data), reference)
        return reference


__all__ = ["UploadStorage", "guess_image_mime_type"]
