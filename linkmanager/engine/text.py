"""Text utilities for matching anchors and comparing URLs."""

from __future__ import annotations

import re
from typing import List, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

_WHITESPACE = re.compile(r"\s+")


def find_spans(text: str, needle: str) -> List[Tuple[int, int]]:
    """Return non-overlapping case-insensitive matches of needle in text."""

    if not text or not needle:
        return []
    pattern = re.compile(re.escape(needle), re.IGNORECASE)
    return [match.span() for match in pattern.finditer(text)]


def normalize_space(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def same_text(left: str, right: str) -> bool:
    """Case-insensitive comparison ignoring surrounding and repeated whitespace."""

    return normalize_space(left).lower() == normalize_space(right).lower()


def is_root_relative(url: str) -> bool:
    return url.startswith("/") and not url.startswith("//")


def absolutize(url: str, site_url: str) -> str:
    """Make root-relative URLs absolute against the site origin."""

    if is_root_relative(url) and site_url:
        return urljoin(site_url.rstrip("/") + "/", url)
    return url


def normalize_permalink(url: str) -> str:
    """Lower-case, drop query and fragment, ensure a trailing slash."""

    value = (url or "").strip().lower()
    try:
        parts = urlsplit(value)
    except ValueError:
        value = value.split("#", 1)[0].split("?", 1)[0]
        return value if value.endswith("/") else value + "/"
    path = parts.path if parts.path.endswith("/") else parts.path + "/"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))
