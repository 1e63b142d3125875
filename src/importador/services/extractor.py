"""Line-item extraction from ``det`` nodes.

The ICMS block of a line carries exactly one of a closed set of groups
(ICMS00, ICMS10, ..., ICMSSN900). Matchers are tried in a fixed order and the
first group present wins; an unknown or absent group yields ``NoIcms`` and a
warning, never an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lxml import etree

from importador.models.document import LineItem
from importador.models.tax import IcmsSimplified, IcmsStandard, IcmsVariant, IpiValues, NoIcms
from importador.services.xml_reader import child, find_all, find_first, text_of
from importador.utils.numbers import non_negative, parse_locale_number

logger = logging.getLogger(__name__)

NO_GTIN = "SEM GTIN"


@dataclass(frozen=True)
class IcmsMatcher:
    """Tagged matcher for one ICMS group name."""

    grupo: str
    simplified: bool = False

    def match(self, icms: etree._Element) -> IcmsVariant | None:
        block = child(icms, self.grupo)
        if block is None:
            return None
        taxes = {
            "base": _number(block, "vBC"),
            "valor": _number(block, "vICMS"),
            "aliquota": _number(block, "pICMS"),
        }
        origem = text_of(block, "orig")
        if self.simplified:
            return IcmsSimplified(
                grupo=self.grupo, csosn=text_of(block, "CSOSN"), origem=origem, **taxes
            )
        return IcmsStandard(grupo=self.grupo, cst=text_of(block, "CST"), origem=origem, **taxes)


ICMS_MATCHERS: tuple[IcmsMatcher, ...] = (
    *(
        IcmsMatcher(name)
        for name in (
            "ICMS00",
            "ICMS10",
            "ICMS20",
            "ICMS30",
            "ICMS40",
            "ICMS51",
            "ICMS60",
            "ICMS70",
            "ICMS90",
            "ICMSPart",
            "ICMSST",
        )
    ),
    *(
        IcmsMatcher(name, simplified=True)
        for name in (
            "ICMSSN101",
            "ICMSSN102",
            "ICMSSN201",
            "ICMSSN202",
            "ICMSSN500",
            "ICMSSN900",
        )
    ),
)


@dataclass
class LineExtraction:
    """Extracted lines, one per ``det`` node, plus non-fatal data-gap warnings."""

    items: list[LineItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _number(el: etree._Element | None, name: str):
    return parse_locale_number(text_of(el, name))


def resolve_icms(det: etree._Element) -> IcmsVariant | None:
    """Return the first matching ICMS variant, or None when no known group is present."""
    icms = find_first(det, "imposto", "ICMS")
    if icms is None:
        return None
    for matcher in ICMS_MATCHERS:
        variant = matcher.match(icms)
        if variant is not None:
            return variant
    return None


def resolve_ipi(det: etree._Element) -> IpiValues:
    ipi = find_first(det, "imposto", "IPI")
    trib = child(ipi, "IPITrib")
    if trib is not None:
        return IpiValues(
            grupo="IPITrib",
            base=_number(trib, "vBC"),
            valor=_number(trib, "vIPI"),
            aliquota=_number(trib, "pIPI"),
        )
    if child(ipi, "IPINT") is not None:
        return IpiValues(grupo="IPINT")
    return IpiValues()


def _normalize_ean(value: str) -> str:
    return "" if value.upper() == NO_GTIN else value


def extract_line(det: etree._Element, position: int) -> tuple[LineItem, list[str]]:
    """Build a LineItem from one ``det`` node. Missing text fields become ""."""
    gaps: list[str] = []
    prod = child(det, "prod")
    if prod is None:
        gaps.append(f"Item {position}: grupo de produto (prod) ausente")

    codigo = text_of(prod, "cProd")
    descricao = text_of(prod, "xProd")
    if prod is not None and not codigo:
        gaps.append(f"Item {position}: código do produto ausente")
    if prod is not None and not descricao:
        gaps.append(f"Item {position}: descrição do produto ausente")

    icms = resolve_icms(det)
    if icms is None:
        gaps.append(f"Item {position}: grupo de ICMS não reconhecido, impostos zerados")
        icms = NoIcms()

    item = LineItem(
        codigo=codigo,
        descricao=descricao,
        ncm=text_of(prod, "NCM"),
        cfop=text_of(prod, "CFOP"),
        unidade=text_of(prod, "uCom"),
        quantidade=non_negative(_number(prod, "qCom")),
        valor_unitario=non_negative(_number(prod, "vUnCom")),
        valor_total=non_negative(_number(prod, "vProd")),
        desconto=non_negative(_number(prod, "vDesc")),
        icms=icms,
        ipi=resolve_ipi(det),
        ean=_normalize_ean(text_of(prod, "cEAN")),
        referencia=codigo,
        descricao_complementar=" ".join(text_of(child(det, "infAdProd")).split()),
    )
    return item, gaps


def extract_line_items(root: etree._Element) -> LineExtraction:
    """Extract every line of the document, in document order.

    Never raises: a line that fails unexpectedly is logged and replaced by an
    empty record, so the count matches the validator's ``det`` count.
    """
    result = LineExtraction()
    for position, det in enumerate(find_all(root, "det"), start=1):
        try:
            item, gaps = extract_line(det, position)
        except Exception:
            logger.warning("Falha ao extrair item %d, registro vazio mantido", position, exc_info=True)
            item, gaps = LineItem(), [f"Item {position}: não foi possível extrair os dados"]
        result.items.append(item)
        result.warnings.extend(gaps)

    logger.debug("%d item(ns) extraído(s)", len(result.items))
    return result
