from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

ZERO = Decimal("0")

_WHITESPACE = re.compile(r"\s+")
_PLAIN_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def parse_locale_number(raw: object) -> Decimal:
    """Parse locale-formatted numeric text into a Decimal.

    Accepts both the fiscal XML notation ("11111.31") and the Brazilian display
    notation ("1.234,56"). When both separators appear, "," is the decimal
    separator and "." groups thousands; a lone "," is decimal; a single "." is
    decimal; repeated "." are thousands separators.

    Only plain digits with an optional sign are accepted; exponent notation,
    underscores, garbage, None and empty text all yield 0. Never raises.
    """
    if raw is None:
        return ZERO
    text = _WHITESPACE.sub("", str(raw))
    if not text:
        return ZERO

    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    if not _PLAIN_NUMBER.fullmatch(text):
        return ZERO
    try:
        value = Decimal(text)
    except InvalidOperation:
        return ZERO
    if not value.is_finite():
        return ZERO
    return value


def non_negative(value: Decimal) -> Decimal:
    return value if value > 0 else ZERO
