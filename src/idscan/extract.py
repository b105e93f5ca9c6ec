# src/idscan/extract.py
from __future__ import annotations

from typing import Iterator, Optional, Tuple

MIN_ID_DIGITS = 8
MAX_ID_DIGITS = 10

_ASCII_DIGITS = frozenset("0123456789")


def iter_digit_runs(text: str) -> Iterator[Tuple[int, int]]:
    """
    Yield (start, end) spans of maximal ASCII digit runs, left to right.
    Any other character, including non-ASCII digits, ends a run.
    """
    n = len(text)
    i = 0
    while i < n:
        if text[i] not in _ASCII_DIGITS:
            i += 1
            continue
        start = i
        while i < n and text[i] in _ASCII_DIGITS:
            i += 1
        yield start, i


def extract_id(
    text: Optional[str],
    min_digits: int = MIN_ID_DIGITS,
    max_digits: int = MAX_ID_DIGITS,
) -> Optional[str]:
    """
    Return the first maximal digit run whose length is in [min_digits, max_digits].

    A run is bounded by a non-digit or the string edge on both sides, so
    "123456789012345" never yields its 10-digit prefix. The match is
    returned verbatim (leading zeros kept). Returns None when nothing matches.
    """
    if not text:
        return None
    for start, end in iter_digit_runs(text):
        if min_digits <= end - start <= max_digits:
            return text[start:end]
    return None
