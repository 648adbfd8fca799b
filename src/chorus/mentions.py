"""Mention detection: where an ``@handle`` in text becomes a wake."""

import re

MENTION_PATTERN = re.compile(r"@([a-z0-9_]+)", re.IGNORECASE)
HANDLE_PATTERN = re.compile(r"^[a-z0-9_]+$", re.IGNORECASE)


def extract_mentions(text: str) -> list[str]:
    """Return the distinct lowercased handles mentioned in text.

    Order follows first appearance, which keeps log output stable.
    """
    seen: dict[str, None] = {}
    for match in MENTION_PATTERN.finditer(text or ""):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def is_valid_handle(handle: str) -> bool:
    return bool(HANDLE_PATTERN.fullmatch(handle or ""))


def normalize_handle(raw: str) -> str:
    """Coerce free text into a handle: lowercase, ``[a-z0-9_]`` only."""
    cleaned = re.sub(r"[^a-z0-9_]+", "_", (raw or "").strip().lstrip("@").lower())
    return cleaned.strip("_")
