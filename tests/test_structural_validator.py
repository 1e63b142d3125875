from __future__ import annotations

from decimal import Decimal

from importador.services.structural_validator import read_access_key, validate_document
from importador.services.xml_reader import parse_document
from tests.conftest import CHAVE, build_nfe, make_det


def _validate(**kw):
    return validate_document(parse_document(build_nfe(**kw)))


class TestValidDocument:
    def test_valid(self):
        report = _validate()
        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []

    def test_info_metadata(self):
        info = _validate().info
        assert info["chave"] == CHAVE
        assert info["numero"] == 1234
        assert info["fornecedor"] == "FORNECEDOR EXEMPLO LTDA"
        assert info["cnpj_emitente"] == "12345678000199"
        assert info["quantidade_itens"] == 1
        assert info["valor_total"] == Decimal("100.00")
        assert info["versao"] == "4.00"
        assert info["ambiente"] == "Produção"
        assert info["serie"] == "1"
        assert info["data_emissao"] == "2024-01-15T10:30:00-03:00"
        assert info["destinatario"] == "LOJA DESTINO ME"

    def test_wrapper_flags(self):
        info = _validate().info
        assert info["has_nfe_proc"] is True
        assert info["has_nfe"] is True
        assert info["has_inf_nfe"] is True

    def test_without_proc_wrapper(self):
        report = _validate(proc=False)
        assert report.is_valid
        assert report.info["has_nfe_proc"] is False
        assert report.info["has_nfe"] is True

    def test_cpf_issuer(self):
        report = _validate(cnpj=None, cpf="12345678901")
        assert report.is_valid
        assert report.info["cpf_emitente"] == "12345678901"


class TestRequiredSections:
    def test_missing_emit(self):
        report = _validate(sections=("ide", "det", "total"))
        assert not report.is_valid
        assert any("(emit)" in e for e in report.errors)

    def test_missing_total(self):
        report = _validate(sections=("ide", "emit", "det"))
        assert any("(total)" in e for e in report.errors)


class TestAccessKey:
    def test_missing_key(self):
        report = _validate(chave=None)
        assert "Chave da NFe não encontrada" in report.errors

    def test_protocol_fallback(self):
        report = _validate(chave=None, prot_chave=CHAVE)
        assert report.is_valid
        assert report.info["chave"] == CHAVE

    def test_wrong_length(self):
        report = _validate(chave="123")
        assert "Chave da NFe deve ter 44 dígitos" in report.errors
        assert report.info["chave_informada"] == "123"

    def test_read_access_key_prefers_id(self):
        root = parse_document(build_nfe(prot_chave="9" * 44))
        assert read_access_key(root) == f"NFe{CHAVE}"


class TestFieldShapes:
    def test_non_positive_number(self):
        report = _validate(numero="0")
        assert "Número da NFe deve ser um número positivo" in report.errors

    def test_missing_number_is_not_an_error(self):
        report = _validate(numero=None)
        assert report.is_valid
        assert "numero" not in report.info

    def test_missing_issuer_tax_id(self):
        report = _validate(cnpj=None)
        assert not report.is_valid
        assert any("CNPJ ou CPF do emitente" in e for e in report.errors)
        # Partial metadata is still returned for diagnostics
        assert report.info["numero"] == 1234
        assert report.info["fornecedor"] == "FORNECEDOR EXEMPLO LTDA"

    def test_bad_cnpj_length(self):
        report = _validate(cnpj="123")
        assert "CNPJ do emitente deve ter 14 dígitos" in report.errors

    def test_negative_total(self):
        report = _validate(valor_total="-1.00")
        assert "Valor total da NFe deve ser um número não negativo" in report.errors

    def test_missing_total_value(self):
        report = _validate(valor_total=None)
        assert report.is_valid
        assert "valor_total" not in report.info

    def test_errors_accumulate(self):
        report = _validate(chave="1", numero="-5", cnpj=None)
        assert len(report.errors) == 3


class TestLineCount:
    def test_zero_lines(self):
        report = _validate(dets=[])
        assert not report.is_valid
        assert "NFe deve conter pelo menos um produto" in report.errors

    def test_upper_bound_allowed(self):
        report = _validate(dets=[make_det(i) for i in range(1, 991)])
        assert report.is_valid
        assert report.info["quantidade_itens"] == 990

    def test_too_many_lines(self):
        report = _validate(dets=[make_det(i) for i in range(1, 992)])
        assert not report.is_valid
        assert "NFe não pode conter mais de 990 produtos" in report.errors


class TestWarnings:
    def test_unsupported_version_is_warning(self):
        report = _validate(versao="3.10")
        assert report.is_valid
        assert len(report.warnings) == 1
        assert "3.10" in report.warnings[0]

    def test_homologation_environment(self):
        report = _validate(tp_amb="2")
        assert report.is_valid
        assert "NFe de ambiente de homologação detectada" in report.warnings
        assert report.info["ambiente"] == "Homologação"
