"""
core/pagination.py -- Bounded paging shared by every listing and search.

Limits are clamped, never rejected: asking for 1000 rows with a ceiling of
100 returns 100. Negative skips are a caller bug and fail validation.

Layer rule: core/ is the kernel. May import only from core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from core.errors import ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One slice of a listing plus the metadata needed to fetch the next one."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    skip: int = 0
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.skip + len(self.items) < self.total


def clamp_limit(limit: int | None, max_fetch_limit: int) -> int:
    """Clamp limit to [0, max_fetch_limit]. None means "as many as allowed"."""
    if limit is None:
        return max_fetch_limit
    return max(0, min(limit, max_fetch_limit))


def validate_skip(skip: int | None) -> int:
    if skip is None:
        return 0
    if skip < 0:
        raise ValidationError("skip must not be negative.")
    return skip


def validate_search_text(text: str | None) -> str:
    """Return the trimmed search text. Blank text is rejected for every collection."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Empty search text values are not allowed.")
    return text
