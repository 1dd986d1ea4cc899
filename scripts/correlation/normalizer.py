"""
Location Name Normalization

Single entry point for comparing operator-entered place names.
"""

import re
from typing import Optional

# Keep word characters, whitespace and ampersands ("Mobil & Co")
_PUNCTUATION = re.compile(r"[^\w\s&]")
_WHITESPACE = re.compile(r"\s+")


def normalize_location(text: Optional[str]) -> str:
    """
    Normalize a free-text location name for comparison.

    Examples:
        >>> normalize_location("  BP  Kewdale, Terminal. ")
        'bp kewdale terminal'

        >>> normalize_location(None)
        ''
    """
    if not text:
        return ""
    result = text.casefold()
    result = _PUNCTUATION.sub(" ", result)
    result = _WHITESPACE.sub(" ", result).strip()
    return result


def is_substring_match(a: Optional[str], b: Optional[str], min_length: int = 3) -> bool:
    """
    True when either normalized string contains the other.

    Strings shorter than min_length after normalization never match, so
    a stray "BP" or "WA" cannot pull in every terminal.
    """
    left = normalize_location(a)
    right = normalize_location(b)
    if len(left) < min_length or len(right) < min_length:
        return False
    return left in right or right in left
