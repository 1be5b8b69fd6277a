"""
Field-level parsing helpers for raw property documents.

Source documents are loosely typed: numbers arrive as strings with currency
suffixes and thousands separators, arrays arrive as JSON-encoded strings, and
booleans arrive as free text. Every helper in this module is total - it never
raises - and returns a well-defined empty value (``None``, ``False`` or "now")
when the input cannot be interpreted.

Key Concepts:
- Clamping: numeric values are forced into the range their target column can
  hold before they reach the database
- Canonicalization: free text used as a dimension natural key is reduced to a
  deterministic form ("  New Cairo  " and "new cairo" are the same key)
"""

import json
import logging
import math
import re
import unicodedata
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


# DECIMAL(10,2) columns hold at most 99,999,999.99
MAX_DECIMAL = Decimal("99999999")
MIN_DECIMAL = Decimal("0")
TWO_PLACES = Decimal("0.01")

TRUE_TOKENS = {"true", "yes", "y", "1", "inside", "in"}
EMPTY_ARRAY_SENTINELS = {"", "[]", "{}", "null"}

_NON_DIGIT = re.compile(r"[^\d]")
_NON_DECIMAL = re.compile(r"[^\d.\-]")
_WHITESPACE = re.compile(r"\s+")
_PHONE_CHARS = re.compile(r"[^\d+]")


def parse_integer(value: Any, min_value: int, max_value: int) -> Optional[int]:
    """
    Parse a loosely formatted integer and clamp it to ``[min_value, max_value]``.

    Numeric text ("12", "1E+5", "3.9") is parsed as a number and truncated.
    Otherwise non-digit characters of the integer part are stripped, so
    "3 rooms" becomes 3.
    A leading minus sign is honoured.

    Args:
        value: Raw value (str, int, float or anything else)
        min_value: Lower bound of the target column
        max_value: Upper bound of the target column

    Returns:
        Clamped integer, or None if the value is empty or has no digits

    Examples:
        >>> parse_integer("3 bedrooms", 0, 20)
        3
        >>> parse_integer("45", 0, 20)
        20
        >>> parse_integer("abc", 0, 20) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return max(min_value, min(max_value, value))
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return max(min_value, min(max_value, int(value)))

    text = str(value).strip()
    if not text:
        return None

    # Plain numeric text ("1E+5", ".5", "-3.7") parses exactly
    try:
        exact = Decimal(text)
    except InvalidOperation:
        exact = None
    if exact is not None:
        if not exact.is_finite():
            return None
        return int(max(min_value, min(max_value, exact)))

    negative = text.startswith("-")
    digits = _NON_DIGIT.sub("", text.split(".", 1)[0])
    if not digits:
        return None
    number = -int(digits) if negative else int(digits)
    return max(min_value, min(max_value, number))


def parse_decimal(
    value: Any,
    max_value: Decimal = MAX_DECIMAL,
    min_value: Decimal = MIN_DECIMAL,
) -> Optional[Decimal]:
    """
    Parse a money or measurement value into a two-place ``Decimal``.

    Everything except digits, '.' and '-' is stripped first, which handles
    thousands separators and currency labels ("15,000,000 EGP").
    The result is clamped to ``[min_value, max_value]`` so it always fits the
    fixed-precision column: a single out-of-range value would otherwise make
    the database reject the whole batch it belongs to.

    Args:
        value: Raw value
        max_value: Upper clamp (default 99,999,999)
        min_value: Lower clamp (default 0)

    Returns:
        Decimal quantized to 0.01, or None if unparsable

    Examples:
        >>> parse_decimal("15,000,000 EGP")
        Decimal('15000000.00')
        >>> parse_decimal("999999999999")
        Decimal('99999999.00')
        >>> parse_decimal("abc") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, Decimal):
            number = value
        elif isinstance(value, (int, float)):
            number = Decimal(str(value))
        else:
            cleaned = _NON_DECIMAL.sub("", str(value))
            if not cleaned or cleaned in {"-", ".", "-."}:
                return None
            number = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None

    if not number.is_finite():
        return None

    number = max(min_value, min(max_value, number))
    return number.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_boolean(value: Any) -> bool:
    """Coerce free-text flags ("yes", "Inside", "true") to a boolean. Defaults to False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_TOKENS
    return False


def parse_embedded_array(value: Any) -> Optional[Union[list, dict]]:
    """
    Decode an array/object that may be embedded as a JSON string.

    Structured values are returned unchanged. Strings are parsed as JSON.
    Empty sentinels ("[]", "{}", ""), empty containers, scalars and parse
    failures all yield None: a missing embedded list is not an error.

    Args:
        value: Raw field value

    Returns:
        Parsed list or dict, or None
    """
    if isinstance(value, (list, dict)):
        return value

    if not isinstance(value, str):
        return None

    text = value.strip()
    if text in EMPTY_ARRAY_SENTINELS:
        return None

    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Embedded value is not valid JSON", extra={"value": text[:80]})
        return None

    if not isinstance(parsed, (list, dict)) or not parsed:
        return None

    return parsed


def canonicalize(value: Any) -> str:
    """
    Build the natural key used to deduplicate dimension values.

    Steps:
    1. Unicode NFKC normalization (full-width and compatibility forms fold)
    2. Lower-case
    3. Punctuation replaced by a space (letters of every script are kept)
    4. Whitespace collapsed and trimmed

    Examples:
        >>> canonicalize("  New Cairo  ")
        'new cairo'
        >>> canonicalize("Sheikh-Zayed, Giza")
        'sheikh zayed giza'
        >>> canonicalize("التجمع الخامس")
        'التجمع الخامس'

    Args:
        value: Free text (None is treated as empty)

    Returns:
        Canonical string, possibly empty
    """
    if value is None:
        return ""

    text = unicodedata.normalize("NFKC", str(value)).lower()
    # Combining marks (Arabic harakat, Indic vowel signs) belong to the word
    kept = [
        ch if ch.isalnum() or unicodedata.category(ch).startswith("M") else " "
        for ch in text
    ]
    return _WHITESPACE.sub(" ", "".join(kept)).strip()


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp into an aware UTC-compatible datetime.

    Supports datetime objects (naive ones are assumed UTC), Unix timestamps
    and ISO 8601 strings with a trailing 'Z'. Target columns are NOT NULL, so
    any value that cannot be parsed falls back to the current time.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            pass

    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning("Failed to parse timestamp string", extra={"value": value})

    return datetime.now(timezone.utc)


def clean_phone(value: Any) -> Optional[str]:
    """Keep digits and '+' only, capped at 20 characters."""
    if value is None:
        return None
    cleaned = _PHONE_CHARS.sub("", str(value))[:20]
    return cleaned or None


def safe_string(value: Any) -> Optional[str]:
    """
    Safely convert a value to a stripped string or None.

    Args:
        value: Value to convert

    Returns:
        String value or None if empty/None
    """
    if value is None:
        return None

    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None

    return str(value)


def truncate(value: Optional[str], length: int) -> Optional[str]:
    if value is None:
        return None
    return value[:length]
