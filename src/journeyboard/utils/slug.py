"""Slugs for deliverable titles, which are mostly Portuguese with accents."""

from __future__ import annotations

import hashlib
import re
import unicodedata
from typing import Pattern

_UNSAFE: Pattern[str] = re.compile(r"[^a-z0-9]+")
_HYPHEN_RUN: Pattern[str] = re.compile(r"-{2,}")


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def slugify(value: str | None, *, fallback: str = "entregavel", max_length: int = 80) -> str:
    """Lowercase, accent-free, hyphen-separated form of ``value``.

    Over-long slugs keep a prefix and gain a short digest so distinct titles
    stay distinct after truncation.
    """
    slug = _normalize(value or "")
    if not slug:
        slug = _normalize(fallback) or "entregavel"
    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix}-{digest}"


def _normalize(value: str) -> str:
    slug = _UNSAFE.sub("-", strip_accents(value.strip()).lower())
    return _HYPHEN_RUN.sub("-", slug).strip("-")


__all__ = ["slugify", "strip_accents"]
