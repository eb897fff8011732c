"""
Paging helpers shared by the list operations: page clamping, sort parsing and
literal LIKE search.

Sort values are ``field``, ``field:asc``, ``field:desc`` or ``-field``, and a
single value may carry several comma-separated expressions. Field names match
case-insensitively with underscores ignored, so ``created_at`` and
``createdAt`` are the same field. Unknown fields are skipped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, NamedTuple, Optional

from orgauthz.core.config import Settings

LIKE_ESCAPE = "\\"


class SortField(NamedTuple):
    field: str
    descending: bool = False


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``%`` and ``_`` match literally (escape char ``\\``)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def create_search_pattern(raw: str) -> str:
    return f"%{escape_like(raw.strip())}%"


def normalize_paging(page: int, page_size: int, settings: Settings) -> tuple[int, int]:
    """Pages start at 1; sizes below 1 take the default and are capped at the maximum."""
    if page_size < 1:
        page_size = settings.members_default_page_size
    return max(page, 1), min(page_size, settings.members_max_page_size)


def _parse_sort(token: str) -> Optional[SortField]:
    token = token.strip()
    if not token or token.startswith(":"):
        return None
    if token.startswith("-"):
        field, descending = token[1:], True
    else:
        field, _, direction = token.partition(":")
        descending = direction.strip().lower() == "desc"
    field = field.strip().replace("_", "").lower()
    if not field or field.startswith(":"):
        return None
    return SortField(field, descending)


def parse_sorts(values: Optional[Iterable[Optional[str]]]) -> list[SortField]:
    sorts = []
    for value in values or []:
        if not value or not value.strip():
            continue
        for token in value.split(","):
            sort = _parse_sort(token)
            if sort is not None:
                sorts.append(sort)
    return sorts


def build_ordering(
    sorts: Iterable[SortField],
    columns: Mapping[str, Any],
    default: Sequence[Any],
    tiebreak: Sequence[Any] = (),
) -> list[Any]:
    """ORDER BY clauses for the known ``sorts``, else ``default``; ``tiebreak`` always follows."""
    clauses = []
    for sort in sorts:
        column = columns.get(sort.field)
        if column is None:
            continue
        clauses.append(column.desc() if sort.descending else column.asc())
    return [*(clauses or default), *tiebreak]
