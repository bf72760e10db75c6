"""Utilities to normalize labels, window titles and timestamps."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "firefox.exe": (" - Mozilla Firefox",),
    "brave.exe": (" - Brave",),
    "opera.exe": (" - Opera",),
    "google chrome": (" - Google Chrome",),
    "firefox": (" - Mozilla Firefox",),
    "safari": (" - Safari",),
}


def normalize_window_title(app_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not app_name:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(app_name.strip().lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")


def normalize_label(value: Optional[str]) -> str:
    """Case-folded, whitespace-collapsed form used for label comparison."""
    if not value:
        return ""
    return " ".join(value.casefold().split())


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse a stored timestamp into a local naive datetime.

    Accepts ``datetime`` objects or ISO-8601 strings (including the trailing
    ``Z`` written by JavaScript clients). Raises ``ValueError`` on garbage.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
