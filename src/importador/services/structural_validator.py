"""Structural checks on a parsed NFe tree.

Every check appends to a ValidationReport instead of raising, so that callers
still get whatever metadata could be read from a document that will not be
persisted. Only the subset of the official layout needed to store the document
safely is checked; this is not XSD validation.
"""

from __future__ import annotations

import logging

from lxml import etree

from importador.config import MAX_LINE_ITEMS, SUPPORTED_VERSION, TP_AMB_LABELS
from importador.models.results import ValidationReport
from importador.services.xml_reader import attr_of, find_all, find_first, text_of
from importador.utils.validators import (
    strip_key_prefix,
    validate_access_key,
    validate_cnpj,
    validate_cpf,
    validate_declared_total,
    validate_document_number,
)

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS: tuple[tuple[str, str], ...] = (
    ("ide", "Identificação da NFe"),
    ("emit", "Dados do Emitente"),
    ("det", "Detalhes dos Produtos"),
    ("total", "Totais da NFe"),
)


def read_access_key(root: etree._Element) -> str:
    """Return the raw access key: ``infNFe/@Id``, falling back to ``infProt/chNFe``."""
    inf_nfe = find_first(root, "infNFe")
    raw = attr_of(inf_nfe, "Id")
    if not raw:
        raw = text_of(root, "protNFe", "infProt", "chNFe")
    return raw


def _check_wrappers(root: etree._Element, report: ValidationReport) -> None:
    root_name = etree.QName(root).localname
    report.info["has_nfe_proc"] = root_name == "nfeProc" or bool(find_all(root, "nfeProc"))
    report.info["has_nfe"] = root_name == "NFe" or bool(find_all(root, "NFe"))
    report.info["has_inf_nfe"] = root_name == "infNFe" or bool(find_all(root, "infNFe"))


def _check_required_sections(root: etree._Element, report: ValidationReport) -> None:
    for name, label in REQUIRED_SECTIONS:
        if find_first(root, name) is None:
            report.error(f"Elemento obrigatório não encontrado: {label} ({name})")


def _check_access_key(root: etree._Element, report: ValidationReport) -> None:
    raw = read_access_key(root)
    if not raw:
        report.error("Chave da NFe não encontrada")
        return
    try:
        report.info["chave"] = validate_access_key(raw)
    except ValueError as exc:
        report.info["chave_informada"] = strip_key_prefix(raw)
        report.error(str(exc))


def _check_document_number(root: etree._Element, report: ValidationReport) -> None:
    raw = text_of(root, "ide", "nNF")
    if not raw:
        return
    try:
        report.info["numero"] = validate_document_number(raw)
    except ValueError as exc:
        report.error(str(exc))


def _check_issuer(root: etree._Element, report: ValidationReport) -> None:
    emit = find_first(root, "emit")
    nome = text_of(emit, "xNome")
    if nome:
        report.info["fornecedor"] = nome
    elif emit is not None:
        report.warn("Nome do emitente (xNome) ausente")

    cnpj = text_of(emit, "CNPJ")
    cpf = text_of(emit, "CPF")
    if not cnpj and not cpf:
        report.error("CNPJ ou CPF do emitente é obrigatório")
        return
    if cnpj:
        try:
            report.info["cnpj_emitente"] = validate_cnpj(cnpj)
        except ValueError as exc:
            report.error(str(exc))
    if cpf:
        try:
            report.info["cpf_emitente"] = validate_cpf(cpf)
        except ValueError as exc:
            report.error(str(exc))


def _check_line_count(root: etree._Element, report: ValidationReport) -> None:
    count = len(find_all(root, "det"))
    report.info["quantidade_itens"] = count
    if count == 0:
        report.error("NFe deve conter pelo menos um produto")
    elif count > MAX_LINE_ITEMS:
        report.error(f"NFe não pode conter mais de {MAX_LINE_ITEMS} produtos")


def _check_declared_total(root: etree._Element, report: ValidationReport) -> None:
    raw = text_of(root, "ICMSTot", "vNF")
    if not raw:
        return
    try:
        report.info["valor_total"] = validate_declared_total(raw)
    except ValueError as exc:
        report.error(str(exc))


def _check_version(root: etree._Element, report: ValidationReport) -> None:
    versao = attr_of(find_first(root, "infNFe"), "versao")
    if not versao:
        return
    report.info["versao"] = versao
    if versao != SUPPORTED_VERSION:
        report.warn(
            f"Versão da NFe ({versao}) pode não ser totalmente suportada. "
            f"Versão recomendada: {SUPPORTED_VERSION}"
        )


def _check_environment(root: etree._Element, report: ValidationReport) -> None:
    tp_amb = text_of(root, "ide", "tpAmb")
    if not tp_amb:
        return
    report.info["ambiente"] = TP_AMB_LABELS.get(tp_amb, tp_amb)
    if tp_amb == "2":
        report.warn("NFe de ambiente de homologação detectada")


def _collect_metadata(root: etree._Element, report: ValidationReport) -> None:
    ide = find_first(root, "ide")
    data_emissao = text_of(ide, "dhEmi") or text_of(ide, "dEmi")
    if data_emissao:
        report.info["data_emissao"] = data_emissao
    serie = text_of(ide, "serie")
    if serie:
        report.info["serie"] = serie
    destinatario = text_of(root, "dest", "xNome")
    if destinatario:
        report.info["destinatario"] = destinatario


_CHECKS = (
    _check_wrappers,
    _check_required_sections,
    _check_access_key,
    _check_document_number,
    _check_issuer,
    _check_line_count,
    _check_declared_total,
    _check_version,
    _check_environment,
    _collect_metadata,
)


def validate_document(root: etree._Element) -> ValidationReport:
    """Run all structural checks in order, accumulating errors and warnings."""
    report = ValidationReport()
    for check in _CHECKS:
        check(root, report)

    if report.is_valid:
        logger.info("NFe %s validada", report.info.get("chave", "?"))
    else:
        logger.info(
            "NFe inválida: %d erro(s): %s", len(report.errors), "; ".join(report.errors)
        )
    return report
