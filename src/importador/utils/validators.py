from __future__ import annotations

import re
from decimal import Decimal

from importador.config import ACCESS_KEY_LENGTH, ACCESS_KEY_PREFIX

ROUNDING_POLICIES = frozenset({"none", "90", "50"})

_INTEGER = re.compile(r"[+-]?\d+")
_DECIMAL = re.compile(r"[+-]?\d+(?:\.\d+)?")


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def strip_key_prefix(value: str) -> str:
    """Drop the literal ``NFe`` prefix carried by ``infNFe/@Id``."""
    value = value.strip()
    if value.startswith(ACCESS_KEY_PREFIX):
        return value[len(ACCESS_KEY_PREFIX):]
    return value


def validate_access_key(value: str) -> str:
    """Validate an NFe access key: exactly 44 digits after the ``NFe`` prefix."""
    key = strip_key_prefix(value)
    if not re.fullmatch(rf"\d{{{ACCESS_KEY_LENGTH}}}", key):
        raise ValueError(f"Chave da NFe deve ter {ACCESS_KEY_LENGTH} dígitos")
    return key


def validate_document_number(value: str) -> int:
    """Validate nNF: must parse to a positive integer."""
    value = value.strip()
    number = int(value) if _INTEGER.fullmatch(value) else 0
    if number <= 0:
        raise ValueError("Número da NFe deve ser um número positivo")
    return number


def validate_cnpj(value: str) -> str:
    """Validate a CNPJ: 14 digits once punctuation is removed."""
    digits = only_digits(value)
    if len(digits) != 14:
        raise ValueError("CNPJ do emitente deve ter 14 dígitos")
    return digits


def validate_cpf(value: str) -> str:
    """Validate a CPF: 11 digits once punctuation is removed."""
    digits = only_digits(value)
    if len(digits) != 11:
        raise ValueError("CPF do emitente deve ter 11 dígitos")
    return digits


def validate_declared_total(value: str) -> Decimal:
    """Validate vNF: a non-negative number in XML notation, no exponent."""
    value = value.strip()
    if not _DECIMAL.fullmatch(value):
        raise ValueError("Valor total da NFe deve ser um número não negativo")
    d = Decimal(value)
    if d < 0:
        raise ValueError("Valor total da NFe deve ser um número não negativo")
    return d


def validate_non_negative(value: object, label: str) -> Decimal:
    """Validate a pricing setting (tax rate, markup, freight): plain number >= 0."""
    if isinstance(value, Decimal) and value.is_finite():
        d = value
    else:
        text = str(value).strip()
        if not _DECIMAL.fullmatch(text):
            raise ValueError(f"{label}: valor numérico inválido '{value}'")
        d = Decimal(text)
    if d < 0:
        raise ValueError(f"{label} deve ser um número positivo")
    return d


def validate_rounding(value: str) -> str:
    """Validate the rounding policy enum: none, 90 or 50."""
    if value not in ROUNDING_POLICIES:
        raise ValueError(
            f"Arredondamento inválido: '{value}'. Use um de: {', '.join(sorted(ROUNDING_POLICIES))}"
        )
    return value


def validate_hidden_items(values: object) -> list[int]:
    """Validate hidden line indices: a list of non-negative integers, deduplicated and sorted."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise ValueError("Itens ocultos devem ser uma lista de índices")
    result: set[int] = set()
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise ValueError(f"Índice de item inválido: {v!r}")
        result.add(v)
    return sorted(result)
