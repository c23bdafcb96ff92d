"""Text normalization for line items, catalog fields, aliases and training text.

normalize() is deterministic and idempotent. The same function runs on
queries and on training examples at write time, so equality on the
normalized form stays meaningful across calls.
"""

import re
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
_WITH = re.compile(r"\bw/\s*")
_AMPERSAND = re.compile(r"&")
_DISALLOWED = re.compile(r"[^a-z0-9\s./\-]")

# Numeric dimension tokens: 5/16-18, 2-1/2, 18x2-1/2
_SLASH_BETWEEN_DIGITS = re.compile(r"(?<=\d)\s*/\s*(?=\d)")
_HYPHEN_BETWEEN_DIGITS = re.compile(r"(?<=\d)\s*-+\s*(?=\d)")
_LOOSE_HYPHEN = re.compile(r"(?<!\d)-+|-+(?!\d)")
_DIMENSION_X = re.compile(r"(?<=\d)\s*x\s*(?=\d)")

_ABBREVIATIONS = (
    (re.compile(r"\bgr\.?(?=\s|\d|$)"), "grade"),
    (re.compile(r"\bhx\b"), "hex"),
    (re.compile(r"\bhd\b"), "head"),
    (re.compile(r"\bscr\b"), "screw"),
    (re.compile(r"\bzp\b"), "zinc plated"),
    (re.compile(r"\bss\b"), "stainless steel"),
    (re.compile(r"\bst steel\b"), "stainless steel"),
    (re.compile(r"\bstainless st\b"), "stainless steel"),
    (re.compile(r"\balum\b"), "aluminum"),
    (re.compile(r"\bzinc pl\b"), "zinc plated"),
)


def collapse(text: Optional[str]) -> str:
    """Lowercase, collapse whitespace and trim. No other rewriting."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.lower()).strip()


def normalize(text: Optional[str]) -> str:
    """Canonicalize raw text for comparison.

    Lowercases, collapses whitespace, expands domain abbreviations
    ("w/" -> "with", "hx" -> "hex", ...) and normalizes hyphen/slash usage
    around numeric dimension tokens. Characters other than letters, digits,
    spaces, periods, slashes and numeric hyphens are dropped.

    Args:
        text: Raw text (None allowed)

    Returns:
        Normalized text; "" for None, empty or whitespace-only input

    Example:
        >>> normalize("GR. 8 HX HD CAP SCR 5/16-18X2-1/2")
        'grade 8 hex head cap screw 5/16-18 x 2-1/2'
    """
    value = collapse(text)
    if not value:
        return ""

    value = _WITH.sub("with ", value)
    value = _AMPERSAND.sub(" and ", value)
    value = _DISALLOWED.sub(" ", value)
    value = _WHITESPACE.sub(" ", value)

    # Dimension tokens
    value = _SLASH_BETWEEN_DIGITS.sub("/", value)
    value = _HYPHEN_BETWEEN_DIGITS.sub("-", value)
    value = _LOOSE_HYPHEN.sub(" ", value)
    value = _DIMENSION_X.sub(" x ", value)
    value = _WHITESPACE.sub(" ", value).strip()

    for pattern, replacement in _ABBREVIATIONS:
        value = pattern.sub(replacement, value)

    return _WHITESPACE.sub(" ", value).strip()
