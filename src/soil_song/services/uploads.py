"""Persistence for soil photos submitted with a story request."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path

from ..utils import build_storage_name

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads"


class ImageError(ValueError):
    """Raised when a submitted image cannot be accepted."""


class InvalidImage(ImageError):
    """Raised when the payload is not valid base64."""


class ImageTooLarge(ImageError):
    """Raised when the decoded image exceeds the configured limit."""


@dataclass(frozen=True)
class StoredImage:
    path: Path
    locator: str
    size_bytes: int


class ImageStore:
    """Write decoded images under the upload root with unique names."""

    def __init__(self, root: Path, *, max_bytes: int) -> None:
        self._root = Path(root)
        self._max_bytes = max_bytes

    @property
    def root(self) -> Path:
        return self._root

    def decode(self, encoded: str) -> bytes:
        payload = encoded.strip()
        # Accept data URLs ("data:image/jpeg;base64,....") as well as bare base64.
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidImage("Image must be base64 encoded") from exc
        if not data:
            raise InvalidImage("Image payload is empty")
        if len(data) > self._max_bytes:
            raise ImageTooLarge(
                f"Image exceeds the {self._max_bytes // (1024 * 1024)} MB limit"
            )
        return data

    async def save_base64(self, encoded: str) -> StoredImage:
        data = self.decode(encoded)
        self._root.mkdir(parents=True, exist_ok=True)
        name = build_storage_name("soil", ".jpg")
        path = self._root / name
        await asyncio.to_thread(path.write_bytes, data)
        logger.info("Saved image to %s", path)
        return StoredImage(
            path=path,
            locator=f"{UPLOAD_URL_PREFIX}/{name}",
            size_bytes=len(data),
        )


__all__ = [
    "ImageError",
    "ImageStore",
    "ImageTooLarge",
    "InvalidImage",
    "StoredImage",
]
