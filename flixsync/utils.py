"""Utility helpers for the flixsync pipeline."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` elements."""

    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def decode_base64_if_possible(value: str | None) -> str | None:
    """Return the decoded text when ``value`` looks like base64-encoded UTF-8.

    Xtream panels usually base64 encode EPG titles and descriptions, but not
    consistently, so short or non-base64 strings are returned untouched.
    """

    if value is None:
        return None
    candidate = value.strip()
    if len(candidate) <= 20 or len(candidate) % 4 or not _BASE64_RE.match(candidate):
        return value
    try:
        return base64.b64decode(candidate, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value
