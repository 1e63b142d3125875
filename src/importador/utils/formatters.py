from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def format_brl(value: Decimal | str) -> str:
    """Format a numeric value as R$ X.XXX,XX."""
    d = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    formatted = f"{d:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {formatted}"


def format_access_key(key: str) -> str:
    """Group a 44-digit access key in blocks of four, as printed on the DANFE."""
    return " ".join(key[i : i + 4] for i in range(0, len(key), 4))


def round_price(price: Decimal, policy: str) -> Decimal:
    """Apply a display rounding policy.

    ``90`` keeps the integer part and ends in ,90; ``50`` rounds up to the next
    half real; anything else rounds to cents.
    """
    if policy == "90":
        return Decimal(math.floor(price)) + Decimal("0.90")
    if policy == "50":
        return Decimal(math.ceil(price * 2)) / 2
    return price.quantize(_CENT, rounding=ROUND_HALF_UP)


def sale_price(net_price: Decimal, markup: Decimal) -> Decimal:
    """Net price grossed up by a markup percentage."""
    return net_price * (1 + markup / 100)
