from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

"""Money parsing helpers.

Spreadsheet cells arrive as floats, ints or free text such as "$1,234.50",
"1.234,50" or "-10". Everything is turned into Decimal and then into integer
cents; no float arithmetic happens after parsing.
"""

__all__ = [
    "AmountParseError",
    "parse_decimal",
    "to_cents",
    "is_blank",
]

_STRIP = re.compile(r"[^\d.,\-]")


class AmountParseError(ValueError):
    pass


def is_blank(value: Any) -> bool:
    """None, NaN and whitespace-only strings count as empty cells."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _normalize_separators(text: str) -> str:
    """Decide which of ',' / '.' is the decimal separator and drop the other."""
    last_dot = text.rfind(".")
    last_comma = text.rfind(",")
    if last_dot >= 0 and last_comma >= 0:
        # both present: whichever comes last is the decimal separator
        if last_comma > last_dot:
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if last_comma >= 0:
        decimals = len(text) - last_comma - 1
        if text.count(",") == 1 and decimals in (1, 2):
            return text.replace(",", ".")
        return text.replace(",", "")
    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def parse_decimal(value: Any) -> Decimal:
    """Locale tolerant number parsing.

    Raises:
        AmountParseError: blank, non numeric or non finite input
    """
    if isinstance(value, bool):
        raise AmountParseError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise AmountParseError(f"not a finite number: {value!r}")
        # repr round-trips the shortest form: 0.1 -> Decimal('0.1')
        result = Decimal(repr(float(value)))
    elif isinstance(value, str):
        text = value.strip()
        negative = text.startswith("(") and text.endswith(")")  # accounting style (100.00)
        cleaned = _STRIP.sub("", text)
        if "-" in cleaned:
            if cleaned.count("-") > 1 or not cleaned.startswith("-"):
                raise AmountParseError(f"not a number: {value!r}")
            negative = True
            cleaned = cleaned[1:]
        if not any(ch.isdigit() for ch in cleaned):
            raise AmountParseError(f"not a number: {value!r}")
        try:
            result = Decimal(_normalize_separators(cleaned))
        except InvalidOperation as e:
            raise AmountParseError(f"not a number: {value!r}") from e
        if negative:
            result = -result
    else:
        # numpy scalars and friends
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise AmountParseError(f"not a number: {value!r}") from e
    if not result.is_finite():
        raise AmountParseError(f"not a finite number: {value!r}")
    return result


def to_cents(amount: Decimal) -> int:
    """Round half-up to 2 decimals and return integer cents."""
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
