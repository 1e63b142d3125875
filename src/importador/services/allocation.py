"""Proportional distribution of document-level amounts across lines.

Shares are exact Decimal quotients; accumulated drift across lines is not
corrected.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from decimal import Decimal

from importador.models.document import LineItem

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def proportional_shares(weights: Sequence[Decimal], amount: Decimal) -> list[Decimal]:
    """Split *amount* across *weights* proportionally. A zero weight sum yields zeros."""
    total = sum(weights, ZERO)
    if total <= 0 or amount <= 0:
        return [ZERO] * len(weights)
    return [(weight / total) * amount for weight in weights]


def discount_remainder(items: Sequence[LineItem], declared_total: Decimal) -> Decimal:
    """Gross line sum minus the declared net total, floored at zero."""
    gross = sum((item.valor_total for item in items), ZERO)
    return max(ZERO, gross - declared_total)


def allocate_discounts(items: Sequence[LineItem], declared_total: Decimal) -> list[LineItem]:
    """Replace each line's discount with its share of the document-level remainder.

    >>> [i.desconto for i in allocate_discounts([LineItem(valor_total=Decimal("11111.31"))], Decimal("9305.70"))]
    [Decimal('1805.61')]
    """
    remainder = discount_remainder(items, declared_total)
    shares = proportional_shares([item.valor_total for item in items], remainder)
    return [replace(item, desconto=share) for item, share in zip(items, shares)]


def freight_weight(item: LineItem, entry_tax_rate: Decimal) -> Decimal:
    """Net cost of a line grossed up by the entry-tax rate (percent)."""
    return max(ZERO, item.valor_liquido) * (1 + entry_tax_rate / HUNDRED)


def allocate_freight(
    items: Sequence[LineItem], freight: Decimal, entry_tax_rate: Decimal
) -> list[LineItem]:
    """Distribute a freight value by net cost; no freight leaves every share at zero."""
    weights = [freight_weight(item, entry_tax_rate) for item in items]
    shares = proportional_shares(weights, freight)
    return [replace(item, frete_proporcional=share) for item, share in zip(items, shares)]


def net_total(items: Sequence[LineItem]) -> Decimal:
    return sum((item.valor_liquido for item in items), ZERO)
