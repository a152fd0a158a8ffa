"""Guardrails for everything the engine writes into markup.

URLs are checked against a scheme allow-list, link attributes against a
name allow-list, and replacement anchor text is reduced to a small set of
inline formatting tags. Nothing reaches the document without passing here.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any, Dict, Mapping
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, NavigableString  # type: ignore

from .config import EngineConfig
from .errors import UnsafeUrlError

logger = logging.getLogger(__name__)

_ATTRIBUTE_NAME = re.compile(r"^[a-z][a-z0-9_:.-]*$")
_IGNORED_IN_SCHEME = re.compile(r"[\x00-\x20]+")


def is_safe_url(url: str | None, config: EngineConfig) -> bool:
    """Return True for absolute http(s) URLs and root-relative paths."""

    if not isinstance(url, str):
        return False
    value = url.strip()
    if not value:
        return False
    if _has_unsafe_scheme(value, config):
        return False
    if value.startswith("/"):
        # "//host" and "/\host" are protocol-relative in browsers.
        return value[1:2] not in ("/", "\\")
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme.lower() in config.names("allowed_schemes") and bool(parts.netloc)


def ensure_safe_url(url: str | None, config: EngineConfig) -> str:
    if not is_safe_url(url, config):
        logger.debug("Rejected unsafe link URL %r", url)
        raise UnsafeUrlError(str(url or ""))
    return url.strip()


def ensure_kept_url(url: str | None, config: EngineConfig) -> str:
    """Check an href carried over from an existing link.

    Only blank values and script-capable schemes are refused, so ``mailto:``,
    fragment and relative hrefs already in a document survive edits.
    """

    value = url.strip() if isinstance(url, str) else ""
    if not value or _has_unsafe_scheme(value, config):
        logger.debug("Rejected unsafe existing link URL %r", url)
        raise UnsafeUrlError(str(url or ""))
    return value


def filter_attributes(attributes: Mapping[str, Any] | None, config: EngineConfig) -> Dict[str, str]:
    """Keep allow-listed link attributes with string values.

    ``href`` is never accepted here, nor are event handlers or values that
    carry a script-capable scheme.
    """

    if not attributes:
        return {}
    allowed = set(config.names("allowed_link_attributes"))
    prefixes = tuple(config.names("allowed_attribute_prefixes"))

    kept: Dict[str, str] = {}
    for name, value in attributes.items():
        key = str(name).strip().lower()
        if not _ATTRIBUTE_NAME.match(key) or key == "href" or key.startswith("on"):
            logger.debug("Dropped link attribute %r", name)
            continue
        if key not in allowed and not key.startswith(prefixes):
            logger.debug("Dropped link attribute %r", name)
            continue
        text = _attribute_value(value)
        if _has_unsafe_scheme(text, config):
            logger.debug("Dropped link attribute %r with unsafe value", name)
            continue
        kept[key] = text
    return kept


def sanitize_anchor_html(fragment: str, config: EngineConfig) -> str:
    """Reduce anchor text markup to the inline formatting allow-list.

    Elements such as ``script`` are removed with their content, other
    disallowed elements are unwrapped so their text survives, and every
    attribute is stripped from the elements that remain.
    """

    if not fragment:
        return ""
    soup = BeautifulSoup(fragment, "html.parser")
    allowed = set(config.names("allowed_inline_tags"))
    stripped = set(config.names("stripped_content_tags"))

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        name = (tag.name or "").lower()
        if name in stripped:
            tag.decompose()
        elif name in allowed:
            tag.attrs = {}
        else:
            tag.unwrap()

    for node in list(soup.descendants):
        if isinstance(node, NavigableString) and type(node) is not NavigableString:
            node.extract()

    return soup.decode()


def build_link_tag(url: str, inner_html: str, attributes: Mapping[str, str], config: EngineConfig) -> str:
    """Render an ``<a>`` element; inner_html is inserted verbatim.

    New URLs are expected to have passed :func:`ensure_safe_url` already;
    here only the deny-list is applied so existing hrefs can be kept.
    """

    href = ensure_kept_url(url, config)
    parts = [f'href="{html.escape(href, quote=True)}"']
    for name, value in attributes.items():
        if name == "href":
            continue
        parts.append(f'{name}="{html.escape(str(value), quote=True)}"')
    return f"<a {' '.join(parts)}>{inner_html}</a>"


def _attribute_value(value: Any) -> str:
    if value is None or value is True:
        return ""
    if isinstance(value, (list, tuple, set)):
        return " ".join(str(item) for item in value)
    return str(value)


def _has_unsafe_scheme(value: str, config: EngineConfig) -> bool:
    compact = _IGNORED_IN_SCHEME.sub("", html.unescape(value)).lower()
    return any(compact.startswith(f"{scheme}:") for scheme in config.names("unsafe_schemes"))
