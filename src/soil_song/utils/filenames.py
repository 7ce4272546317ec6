"""Filename utilities for generated audio and uploaded images."""

from __future__ import annotations

import re
from typing import Optional
from uuid import uuid4

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def slugify(name: str | None, *, max_length: int = 40) -> str:
    """Return a filesystem-friendly, lowercase, underscore-separated slug.

    Empty when no reasonable slug can be produced.
    """

    if not name:
        return ""
    slug = _NON_ALNUM.sub("_", name).strip("_").lower()
    if max_length > 0 and len(slug) > max_length:
        slug = slug[:max_length].rstrip("_")
    return slug


def build_storage_name(
    prefix: str,
    extension: str,
    unique_id: Optional[str] = None,
) -> str:
    """Construct a collision-free stored filename such as ``soil_<hex>.jpg``.

    The unique part always follows the prefix so names stay unique even when the
    prefix slugs to nothing.
    """

    ext = extension if not extension or extension.startswith(".") else f".{extension}"
    stem = slugify(prefix) or "file"
    return f"{stem}_{unique_id or uuid4().hex}{ext}"


__all__ = ["build_storage_name", "slugify"]
