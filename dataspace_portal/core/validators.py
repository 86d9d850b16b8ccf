"""Input validation helpers for participant and user data."""
from __future__ import annotations
import re
import unicodedata

DNS_LABEL_MAX = 63

_NOT_DNS_SAFE = re.compile(r"[^a-z0-9]")


def normalize_for_inner_dns(raw: str | None) -> str:
    """Reduce a name to a single DNS label usable inside the cluster.

    Lowercases, strips diacritics, drops every character outside
    ``[a-z0-9]`` and truncates to 63 characters. Blank input yields "".

    >>> normalize_for_inner_dns("Acme-Corp")
    'acmecorp'
    >>> normalize_for_inner_dns("Société Générale")
    'societegenerale'
    """
    if raw is None or not raw.strip():
        return ""
    decomposed = unicodedata.normalize("NFD", raw.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NOT_DNS_SAFE.sub("", stripped)[:DNS_LABEL_MAX]


def normalize_username(raw: str) -> str:
    """Normalize and validate username.

    Args:
        raw: Raw username input

    Returns:
        Normalized username

    Raises:
        ValueError: If username is invalid
    """
    normalized = (raw or "").strip().lower()
    if len(normalized) < 3:
        raise ValueError("Username must be at least 3 characters")
    if len(normalized) > 255:
        raise ValueError("Username must not exceed 255 characters")
    if any(not (char.isalnum() or char in {".", "-", "_", "@"}) for char in normalized):
        raise ValueError("Username may only contain letters, digits and . - _ @")
    return normalized


def validate_password(password: str) -> str:
    if not password or len(password) < 8:
        raise ValueError("Password must be at least 8 characters")
    return password
