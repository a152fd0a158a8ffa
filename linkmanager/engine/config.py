"""Configuration helpers for the link engine."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urlsplit

import yaml


@dataclass(frozen=True)
class EngineConfig:
    """Typed wrapper around the engine configuration dictionary."""

    raw: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @property
    def site_url(self) -> str:
        return str(self.raw.get("site_url") or "").rstrip("/")

    @property
    def site_host(self) -> str:
        try:
            return (urlsplit(self.site_url).hostname or "").lower()
        except ValueError:
            return ""

    def names(self, key: str) -> List[str]:
        """Return a lower-cased list setting, tolerating scalars and ``None``."""

        value = self.raw.get(key) or []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip().lower() for item in value if str(item).strip()]


DEFAULTS: Dict[str, Any] = {
    "site_url": "http://localhost",
    "published_statuses": ["publish"],
    "supported_document_types": ["post", "page"],
    "max_batch_size": 50,
    "allowed_schemes": ["http", "https"],
    "unsafe_schemes": ["javascript", "data", "vbscript"],
    "allowed_inline_tags": [
        "em",
        "strong",
        "b",
        "i",
        "u",
        "s",
        "mark",
        "code",
        "sub",
        "sup",
        "small",
        "br",
    ],
    "stripped_content_tags": [
        "script",
        "style",
        "iframe",
        "object",
        "embed",
        "template",
        "noscript",
        "textarea",
    ],
    "allowed_link_attributes": [
        "rel",
        "target",
        "title",
        "class",
        "id",
        "hreflang",
        "lang",
        "type",
    ],
    "allowed_attribute_prefixes": ["data-", "aria-"],
    "default_link_attributes": {},
}


def load_config(path: str | Path | None = None, **overrides: Any) -> EngineConfig:
    """Load configuration from YAML, merging with defaults.

    Keyword overrides are applied last, which lets callers inject the site
    origin without writing a file.
    """

    data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    if path is not None and Path(path).exists():
        with Path(path).open("r", encoding="utf-8") as stream:
            user = yaml.safe_load(stream) or {}
        merge_into(data, user)

    if overrides:
        merge_into(data, overrides)

    return EngineConfig(data)


def merge_into(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge override into base dict."""

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merge_into(base[key], value)
        else:
            base[key] = value
