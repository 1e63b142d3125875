from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TypeAlias

ZERO = Decimal("0")


@dataclass(frozen=True)
class IcmsStandard:
    """ICMS under the normal regime (ICMS00 … ICMS90, ICMSPart, ICMSST)."""

    grupo: str
    cst: str
    origem: str
    base: Decimal = ZERO
    valor: Decimal = ZERO
    aliquota: Decimal = ZERO


@dataclass(frozen=True)
class IcmsSimplified:
    """ICMS under Simples Nacional (ICMSSN101 … ICMSSN900), coded by CSOSN."""

    grupo: str
    csosn: str
    origem: str
    base: Decimal = ZERO
    valor: Decimal = ZERO
    aliquota: Decimal = ZERO

    @property
    def cst(self) -> str:
        return self.csosn


@dataclass(frozen=True)
class NoIcms:
    """No known ICMS group was present on the line."""

    grupo: str = ""
    cst: str = ""
    origem: str = ""
    base: Decimal = ZERO
    valor: Decimal = ZERO
    aliquota: Decimal = ZERO


IcmsVariant: TypeAlias = IcmsStandard | IcmsSimplified | NoIcms


@dataclass(frozen=True)
class IpiValues:
    """IPI base/value/rate. ``IPINT`` (non-taxed) and missing blocks are all zeros."""

    grupo: str = ""
    base: Decimal = ZERO
    valor: Decimal = ZERO
    aliquota: Decimal = ZERO
