"""Utility helpers for backend services."""

from .filenames import build_storage_name, slugify

__all__ = ["build_storage_name", "slugify"]
