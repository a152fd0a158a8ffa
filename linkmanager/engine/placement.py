"""Occurrence selection: which matches an operation should touch."""

from __future__ import annotations

from typing import List, Union

Selector = Union[int, str, None]

NAMED_SELECTORS = ("first", "last", "all")


def resolve_targets(selector: Selector, total: int) -> List[int]:
    """Return the zero-based indices picked by selector among total matches.

    ``None`` means ``first``. Explicit positions are 1-based; a position past
    the end, zero, a negative number or an unknown keyword yields no targets.
    """

    if total <= 0:
        return []
    if selector is None:
        selector = "first"
    if isinstance(selector, bool):
        return []
    if isinstance(selector, str):
        keyword = selector.strip().lower()
        if keyword == "first":
            return [0]
        if keyword == "last":
            return [total - 1]
        if keyword == "all":
            return list(range(total))
        if not keyword.isdigit():
            return []
        selector = int(keyword)
    if not isinstance(selector, int):
        return []
    if 1 <= selector <= total:
        return [selector - 1]
    return []


def explicit_position(selector: Selector) -> int | None:
    """The 1-based position requested by selector, or None for keywords."""

    if isinstance(selector, bool) or selector is None:
        return None
    if isinstance(selector, int):
        return selector
    keyword = str(selector).strip()
    if keyword.lstrip("-").isdigit():
        return int(keyword)
    return None


def is_valid_selector(selector: Selector) -> bool:
    if selector is None:
        return True
    if isinstance(selector, bool):
        return False
    if isinstance(selector, str) and selector.strip().lower() in NAMED_SELECTORS:
        return True
    position = explicit_position(selector)
    return position is not None and position >= 1
