from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from importador.models.tax import IcmsSimplified, IcmsStandard, IcmsVariant, IpiValues, NoIcms
from importador.utils.validators import (
    validate_hidden_items,
    validate_non_negative,
    validate_rounding,
)

ZERO = Decimal("0")


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


@dataclass(frozen=True)
class PricingSettings:
    """Business settings attached to a document; unrelated to the fiscal content."""

    imposto_entrada: Decimal = Decimal("12")
    markup_primario: Decimal = Decimal("160")
    markup_secundario: Decimal = Decimal("130")
    arredondamento: str = "none"
    valor_frete: Decimal = ZERO

    @classmethod
    def from_dict(cls, d: dict) -> PricingSettings:
        """Create settings from a config/request dict, validating every field present."""
        defaults = cls()
        return cls(
            imposto_entrada=validate_non_negative(
                d.get("imposto_entrada", defaults.imposto_entrada), "Imposto de entrada"
            ),
            markup_primario=validate_non_negative(
                d.get("markup_primario", defaults.markup_primario), "Markup primário"
            ),
            markup_secundario=validate_non_negative(
                d.get("markup_secundario", defaults.markup_secundario), "Markup secundário"
            ),
            arredondamento=validate_rounding(str(d.get("arredondamento", defaults.arredondamento))),
            valor_frete=validate_non_negative(
                d.get("valor_frete", defaults.valor_frete), "Valor do frete"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "imposto_entrada": self.imposto_entrada,
            "markup_primario": self.markup_primario,
            "markup_secundario": self.markup_secundario,
            "arredondamento": self.arredondamento,
            "valor_frete": self.valor_frete,
        }


@dataclass(frozen=True)
class LineItem:
    """One product entry of an NFe, as extracted and as persisted."""

    codigo: str = ""
    descricao: str = ""
    ncm: str = ""
    cfop: str = ""
    unidade: str = ""
    quantidade: Decimal = ZERO
    valor_unitario: Decimal = ZERO
    valor_total: Decimal = ZERO
    desconto: Decimal = ZERO
    icms: IcmsVariant = NoIcms()
    ipi: IpiValues = IpiValues()
    ean: str = ""
    referencia: str = ""
    marca: str = ""
    imagem_url: str = ""
    descricao_complementar: str = ""
    # Filled by a cost allocator outside the ingestion core
    custo_extra: Decimal = ZERO
    frete_proporcional: Decimal = ZERO

    @property
    def valor_liquido(self) -> Decimal:
        return self.valor_total - self.desconto

    def to_row(self) -> dict[str, Any]:
        """Flatten into the ``produtos`` column layout (without ``nfe_id``)."""
        return {
            "codigo": self.codigo,
            "descricao": self.descricao,
            "ncm": self.ncm,
            "cfop": self.cfop,
            "unidade": self.unidade,
            "quantidade": self.quantidade,
            "valor_unitario": self.valor_unitario,
            "valor_total": self.valor_total,
            "desconto": self.desconto,
            "valor_liquido": self.valor_liquido,
            "icms_grupo": self.icms.grupo,
            "cst": self.icms.cst,
            "origem": self.icms.origem,
            "base_icms": self.icms.base,
            "valor_icms": self.icms.valor,
            "aliquota_icms": self.icms.aliquota,
            "base_ipi": self.ipi.base,
            "valor_ipi": self.ipi.valor,
            "aliquota_ipi": self.ipi.aliquota,
            "ean": self.ean,
            "referencia": self.referencia,
            "marca": self.marca,
            "imagem_url": self.imagem_url,
            "descricao_complementar": self.descricao_complementar,
            "custo_extra": self.custo_extra,
            "frete_proporcional": self.frete_proporcional,
        }

    @classmethod
    def from_row(cls, row: dict) -> LineItem:
        grupo = row.get("icms_grupo") or ""
        icms: IcmsVariant
        taxes = {
            "base": _dec(row.get("base_icms")),
            "valor": _dec(row.get("valor_icms")),
            "aliquota": _dec(row.get("aliquota_icms")),
        }
        if grupo.startswith("ICMSSN"):
            icms = IcmsSimplified(
                grupo=grupo, csosn=row.get("cst") or "", origem=row.get("origem") or "", **taxes
            )
        elif grupo:
            icms = IcmsStandard(
                grupo=grupo, cst=row.get("cst") or "", origem=row.get("origem") or "", **taxes
            )
        else:
            icms = NoIcms(**taxes)
        return cls(
            codigo=row.get("codigo") or "",
            descricao=row.get("descricao") or "",
            ncm=row.get("ncm") or "",
            cfop=row.get("cfop") or "",
            unidade=row.get("unidade") or "",
            quantidade=_dec(row.get("quantidade")),
            valor_unitario=_dec(row.get("valor_unitario")),
            valor_total=_dec(row.get("valor_total")),
            desconto=_dec(row.get("desconto")),
            icms=icms,
            ipi=IpiValues(
                base=_dec(row.get("base_ipi")),
                valor=_dec(row.get("valor_ipi")),
                aliquota=_dec(row.get("aliquota_ipi")),
            ),
            ean=row.get("ean") or "",
            referencia=row.get("referencia") or "",
            marca=row.get("marca") or "",
            imagem_url=row.get("imagem_url") or "",
            descricao_complementar=row.get("descricao_complementar") or "",
            custo_extra=_dec(row.get("custo_extra")),
            frete_proporcional=_dec(row.get("frete_proporcional")),
        )


@dataclass(frozen=True)
class Document:
    """NFe header. Owns its line items; ``chave`` never changes once stored."""

    id: str
    chave: str | None
    numero: str
    data_emissao: str
    fornecedor: str
    valor: Decimal
    itens: int
    cnpj_fornecedor: str = ""
    serie: str = ""
    pricing: PricingSettings = field(default_factory=PricingSettings)
    itens_ocultos: tuple[int, ...] = ()
    mostrar_ocultos: bool = False
    produtos: tuple[LineItem, ...] = ()

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "numero": self.numero,
            "fornecedor": self.fornecedor,
            "valor": self.valor,
        }

    def to_row(self) -> dict[str, Any]:
        """Flatten into the ``nfes`` column layout."""
        return {
            "id": self.id,
            "chave": self.chave,
            "numero": self.numero,
            "serie": self.serie,
            "data_emissao": self.data_emissao,
            "fornecedor": self.fornecedor,
            "cnpj_fornecedor": self.cnpj_fornecedor,
            "valor": self.valor,
            "itens": self.itens,
            **self.pricing.to_dict(),
            "itens_ocultos": json.dumps(list(self.itens_ocultos)),
            "mostrar_ocultos": self.mostrar_ocultos,
        }

    @classmethod
    def from_row(cls, row: dict, produtos: tuple[LineItem, ...] = ()) -> Document:
        try:
            hidden = validate_hidden_items(json.loads(row.get("itens_ocultos") or "[]"))
        except ValueError:
            hidden = []
        return cls(
            id=row["id"],
            chave=row.get("chave"),
            numero=row.get("numero") or "",
            serie=row.get("serie") or "",
            data_emissao=row.get("data_emissao") or "",
            fornecedor=row.get("fornecedor") or "",
            cnpj_fornecedor=row.get("cnpj_fornecedor") or "",
            valor=_dec(row.get("valor")),
            itens=int(row.get("itens") or 0),
            pricing=PricingSettings(
                imposto_entrada=_dec(row.get("imposto_entrada")),
                markup_primario=_dec(row.get("markup_primario")),
                markup_secundario=_dec(row.get("markup_secundario")),
                arredondamento=row.get("arredondamento") or "none",
                valor_frete=_dec(row.get("valor_frete")),
            ),
            itens_ocultos=tuple(hidden),
            mostrar_ocultos=bool(row.get("mostrar_ocultos")),
            produtos=produtos,
        )
