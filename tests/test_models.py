from __future__ import annotations

import json
from decimal import Decimal

import pytest

from importador.models.document import Document, LineItem, PricingSettings
from importador.models.results import IngestionResult, ValidationReport
from importador.models.tax import IcmsSimplified, IcmsStandard, IpiValues, NoIcms
from tests.conftest import CHAVE


class TestPricingSettings:
    def test_defaults(self):
        p = PricingSettings()
        assert p.imposto_entrada == Decimal("12")
        assert p.markup_primario == Decimal("160")
        assert p.markup_secundario == Decimal("130")
        assert p.arredondamento == "none"
        assert p.valor_frete == Decimal("0")

    def test_from_dict_partial(self):
        p = PricingSettings.from_dict({"valor_frete": "50.00", "arredondamento": "90"})
        assert p.valor_frete == Decimal("50.00")
        assert p.arredondamento == "90"
        assert p.markup_primario == Decimal("160")

    def test_from_dict_invalid_rounding(self):
        with pytest.raises(ValueError, match="Arredondamento"):
            PricingSettings.from_dict({"arredondamento": "10"})

    def test_from_dict_negative_freight(self):
        with pytest.raises(ValueError, match="frete"):
            PricingSettings.from_dict({"valor_frete": "-1"})


class TestLineItem:
    def test_net_value(self):
        item = LineItem(valor_total=Decimal("100"), desconto=Decimal("15.5"))
        assert item.valor_liquido == Decimal("84.5")

    def test_row_roundtrip_standard_icms(self):
        item = LineItem(
            codigo="A1",
            descricao="ITEM",
            valor_total=Decimal("10"),
            icms=IcmsStandard(grupo="ICMS00", cst="00", origem="0", base=Decimal("10"), valor=Decimal("1.8"), aliquota=Decimal("18")),
            ipi=IpiValues(grupo="IPITrib", base=Decimal("10"), valor=Decimal("0.5"), aliquota=Decimal("5")),
        )
        row = item.to_row()
        assert row["icms_grupo"] == "ICMS00"
        assert row["cst"] == "00"
        assert row["valor_liquido"] == Decimal("10")
        restored = LineItem.from_row(row)
        assert isinstance(restored.icms, IcmsStandard)
        assert restored.icms.valor == Decimal("1.8")
        assert restored.ipi.valor == Decimal("0.5")

    def test_row_simplified_icms(self):
        item = LineItem(icms=IcmsSimplified(grupo="ICMSSN102", csosn="102", origem="0"))
        row = item.to_row()
        assert row["cst"] == "102"
        restored = LineItem.from_row(row)
        assert isinstance(restored.icms, IcmsSimplified)
        assert restored.icms.csosn == "102"

    def test_row_without_icms(self):
        restored = LineItem.from_row(LineItem().to_row())
        assert isinstance(restored.icms, NoIcms)

    def test_from_row_handles_floats_and_nulls(self):
        restored = LineItem.from_row({"codigo": None, "valor_total": 1805.61, "desconto": None})
        assert restored.codigo == ""
        assert restored.valor_total == Decimal("1805.61")
        assert restored.desconto == Decimal("0")


class TestDocument:
    def _doc(self, **kw) -> Document:
        defaults = dict(
            id=CHAVE,
            chave=CHAVE,
            numero="1234",
            data_emissao="2024-01-15T10:30:00-03:00",
            fornecedor="FORNECEDOR",
            valor=Decimal("100.00"),
            itens=1,
        )
        defaults.update(kw)
        return Document(**defaults)

    def test_summary(self):
        assert self._doc().summary() == {
            "id": CHAVE,
            "numero": "1234",
            "fornecedor": "FORNECEDOR",
            "valor": Decimal("100.00"),
        }

    def test_row_roundtrip(self):
        doc = self._doc(itens_ocultos=(2, 0), mostrar_ocultos=True)
        row = doc.to_row()
        assert json.loads(row["itens_ocultos"]) == [2, 0]
        restored = Document.from_row(row)
        assert restored.itens_ocultos == (0, 2)
        assert restored.mostrar_ocultos is True
        assert restored.pricing == PricingSettings()

    def test_from_row_bad_hidden_items(self):
        row = {**self._doc().to_row(), "itens_ocultos": "[-1]"}
        assert Document.from_row(row).itens_ocultos == ()


class TestValidationReport:
    def test_valid_without_errors(self):
        report = ValidationReport()
        report.warn("aviso")
        assert report.is_valid
        assert report.to_dict() == {"is_valid": True, "errors": [], "warnings": ["aviso"], "info": {}}

    def test_error_invalidates(self):
        report = ValidationReport()
        report.error("erro")
        assert not report.is_valid


class TestIngestionResult:
    def test_to_dict_merges_header(self):
        result = IngestionResult(
            id="abc", action="created", header={"numero": "1"}, itens_persistidos=2, warnings=("w",)
        )
        assert result.to_dict() == {
            "id": "abc",
            "action": "created",
            "numero": "1",
            "itens_persistidos": 2,
            "warnings": ["w"],
        }
