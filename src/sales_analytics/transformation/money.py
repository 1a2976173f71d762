"""
Money Parsing

Normalizes heterogeneous monetary inputs into exact ``Decimal`` values.

Handles:
- None / empty / garbage input (always ``Decimal("0")``, never raises)
- Integers, floats and decimals (floats through their shortest repr)
- Locale-formatted strings: thousands separators, decimal comma or point,
  currency symbols and codes before or after the number
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

ZERO = Decimal("0")
CENT = Decimal("0.01")

MoneyInput = Union[str, int, float, Decimal, None]

# Unicode whitespace (NBSP, narrow NBSP) and apostrophes group thousands
_GROUPING_CHARS = re.compile(r"[\s'’]")
_LEADING_JUNK = re.compile(r"^[^\d\-+.,]+")
_TRAILING_JUNK = re.compile(r"[^\d]+$")
_NUMBER = re.compile(r"^[-+]?\d*\.?\d+$")


def parse_amount(raw: MoneyInput) -> Decimal:
    """
    Parse a monetary value into an exact Decimal.

    Args:
        raw: String, number or None as delivered by an upstream API

    Returns:
        Parsed amount, or ``Decimal("0")`` when the input is missing or
        cannot be interpreted.

    Example:
        >>> parse_amount("1.234,50 kr")
        Decimal('1234.50')
    """
    if raw is None or isinstance(raw, bool):
        return ZERO

    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else ZERO

    if isinstance(raw, int):
        return Decimal(raw)

    if isinstance(raw, float):
        value = Decimal(repr(raw))
        return value if value.is_finite() else ZERO

    if not isinstance(raw, str):
        return ZERO

    cleaned = _normalize_string(raw)
    if cleaned is None:
        return ZERO

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return ZERO
    return value if value.is_finite() else ZERO


def _normalize_string(raw: str) -> Union[str, None]:
    """Reduce a formatted amount to ``[-]digits[.digits]`` or None"""
    text = _GROUPING_CHARS.sub("", raw)
    text = _LEADING_JUNK.sub("", text)
    text = _TRAILING_JUNK.sub("", text)
    if not text:
        return None

    sign = ""
    if text[0] in "+-":
        sign = "-" if text[0] == "-" else ""
        text = text[1:]

    has_comma = "," in text
    has_point = "." in text

    if has_comma and has_point:
        # Right-most separator is the decimal separator
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif has_comma:
        text = _resolve_single_separator(text, ",")
    elif has_point:
        if text.count(".") > 1:
            text = text.replace(".", "")

    text = sign + text
    if not _NUMBER.match(text):
        return None
    return text


def _resolve_single_separator(text: str, sep: str) -> str:
    """Decide whether a lone comma is a decimal or thousands separator"""
    if text.count(sep) > 1:
        return text.replace(sep, "")

    integer_part, _, fraction = text.partition(sep)
    if len(fraction) == 3 and integer_part.strip("0") != "":
        # "1,234" reads as one thousand two hundred thirty-four
        return integer_part + fraction
    return integer_part + "." + fraction


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half-up. Only applied when a figure is finally read."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_amounts(values) -> Decimal:
    """Exact sum of Decimal amounts, ``Decimal("0")`` when empty"""
    return sum(values, ZERO)
