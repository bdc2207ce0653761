"""Draft cache key derivation.

Non-cryptographic identity hash over the draft's content and URLs. Keys
are computed over UTF-16 code units so they match keys written by the
browser client. Collisions overwrite each other (last writer wins).
"""

from __future__ import annotations

from collections.abc import Iterable

DRAFT_CACHE_PREFIX = "enhance_content_cache_"


def _utf16_units(text: str) -> Iterable[int]:
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        yield int.from_bytes(data[i : i + 2], "little")


def hash_content(text: str) -> str:
    """
    32-bit rolling hash (h = h*31 + unit), signed wrap, magnitude, decimal.

    >>> hash_content("")
    '0'
    >>> hash_content("a")
    '97'
    """
    h = 0
    for unit in _utf16_units(text):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(abs(h))


def draft_cache_key(content: str, urls: Iterable[str]) -> str:
    """Storage key for a draft: prefix + hash(content + concatenated URLs)."""
    return DRAFT_CACHE_PREFIX + hash_content(content + "".join(urls))


__all__ = ["DRAFT_CACHE_PREFIX", "hash_content", "draft_cache_key"]
