"""Shared utility functions for Switchboard."""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, datetime

_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def utcnow() -> datetime:
    """Wall clock used for every TTL and timestamp decision."""
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def normalize_label(text: str | None) -> str:
    """Normalize a free-text label for duplicate detection.

    Lower-cases, strips accents, drops punctuation and quotes, and
    collapses whitespace. "Méditer, le soir !" -> "mediter le soir".
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    stripped = _PUNCT.sub(" ", stripped).replace("_", " ")
    return _SPACES.sub(" ", stripped).strip()


def labels_match(a: str | None, b: str | None) -> bool:
    """Two labels match if their normalized forms are equal or one contains the other."""
    na, nb = normalize_label(a), normalize_label(b)
    if not na or not nb:
        return False
    return na == nb or na in nb or nb in na


def truncate(text: str | None, limit: int) -> str:
    """Collapse whitespace and cut to at most ``limit`` characters."""
    if not text:
        return ""
    flat = _SPACES.sub(" ", text).strip()
    if len(flat) <= limit:
        return flat
    return flat[: max(0, limit - 1)].rstrip() + "…"
