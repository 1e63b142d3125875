from __future__ import annotations

from lxml import etree

from importador.services.exceptions import MalformedDocumentError

# External entities and DTD network fetches are never resolved
XML_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_blank_text=True,
    huge_tree=False,
)


def parse_document(raw: bytes | str) -> etree._Element:
    """Parse raw NFe bytes into an element tree.

    Raises MalformedDocumentError when the input is empty or not XML.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not raw or not raw.strip():
        raise MalformedDocumentError("Erro ao processar XML: conteúdo vazio")
    try:
        root = etree.fromstring(raw, parser=XML_PARSER)
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise MalformedDocumentError(f"Erro ao processar XML: {exc}") from exc
    if root is None:
        raise MalformedDocumentError("Erro ao processar XML: documento sem elemento raiz")
    return root


def _step(name: str) -> str:
    return f"*[local-name()='{name}']"


def find_all(el: etree._Element, *path: str) -> list[etree._Element]:
    """Find descendants by local-name path, matching with or without the NFe namespace.

    ``find_all(root, "emit", "CNPJ")`` matches ``.//emit/CNPJ`` in any namespace.
    """
    xpath = ".//" + "/".join(_step(p) for p in path)
    return el.xpath(xpath)


def find_first(el: etree._Element, *path: str) -> etree._Element | None:
    found = find_all(el, *path)
    return found[0] if found else None


def child(el: etree._Element | None, name: str) -> etree._Element | None:
    """Direct child by local name."""
    if el is None:
        return None
    found = el.xpath(_step(name))
    return found[0] if found else None


def text_of(el: etree._Element | None, *path: str) -> str:
    """Stripped text at a local-name path below *el*; empty string when absent."""
    if el is None:
        return ""
    target = find_first(el, *path) if path else el
    if target is None or target.text is None:
        return ""
    return target.text.strip()


def attr_of(el: etree._Element | None, name: str) -> str:
    if el is None:
        return ""
    return (el.get(name) or "").strip()
