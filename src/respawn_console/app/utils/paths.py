"""File naming helpers for per-session and per-preset storage."""

import re

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_filename(name: str) -> str:
    """Map an ID to a single path component. Separators never survive."""
    return _UNSAFE_CHARS.sub("_", name)


def is_safe_filename(name: str) -> bool:
    return bool(name) and _UNSAFE_CHARS.search(name) is None
