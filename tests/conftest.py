from __future__ import annotations

from decimal import Decimal

import pytest

from importador.models.document import Document, LineItem
from importador.models.tax import IcmsStandard
from importador.services.hooks import MemoryCache, SubscriberHub
from importador.services.store import DocumentStore

NFE_NS = "http://www.portalfiscal.inf.br/nfe"

CHAVE = "".join(
    ["3524", "0112", "3456", "7800", "0199", "5500", "1000", "0012", "3410", "0001", "2345"]
)
OUTRA_CHAVE = "".join(
    ["4124", "0298", "7654", "3200", "0155", "5500", "2000", "0098", "7610", "0009", "8765"]
)

ICMS00 = (
    "<ICMS><ICMS00><orig>0</orig><CST>00</CST><modBC>3</modBC>"
    "<vBC>{vbc}</vBC><pICMS>18.00</pICMS><vICMS>{vicms}</vICMS></ICMS00></ICMS>"
)
ICMSSN102 = "<ICMS><ICMSSN102><orig>0</orig><CSOSN>102</CSOSN></ICMSSN102></ICMS>"
IPI_TRIB = (
    "<IPI><cEnq>999</cEnq><IPITrib><CST>50</CST><vBC>{vbc}</vBC>"
    "<pIPI>5.00</pIPI><vIPI>{vipi}</vIPI></IPITrib></IPI>"
)


def make_det(
    n: int = 1,
    *,
    codigo: str = "P001",
    descricao: str = "PRODUTO TESTE",
    quantidade: str = "1.0000",
    valor_unitario: str = "100.00",
    valor_total: str = "100.00",
    desconto: str | None = None,
    ean: str = "7891234567895",
    icms: str | None = None,
    ipi: str = "",
    inf_ad_prod: str | None = None,
    prod: bool = True,
) -> str:
    """Build one ``det`` element as XML text."""
    if icms is None:
        icms = ICMS00.format(vbc=valor_total, vicms="18.00")
    prod_xml = ""
    if prod:
        prod_xml = (
            "<prod>"
            + (f"<cProd>{codigo}</cProd>" if codigo else "")
            + f"<cEAN>{ean}</cEAN>"
            + (f"<xProd>{descricao}</xProd>" if descricao else "")
            + "<NCM>61091000</NCM><CFOP>5102</CFOP><uCom>UN</uCom>"
            + f"<qCom>{quantidade}</qCom><vUnCom>{valor_unitario}</vUnCom>"
            + f"<vProd>{valor_total}</vProd>"
            + (f"<vDesc>{desconto}</vDesc>" if desconto is not None else "")
            + "</prod>"
        )
    inf = f"<infAdProd>{inf_ad_prod}</infAdProd>" if inf_ad_prod is not None else ""
    return f'<det nItem="{n}">{prod_xml}<imposto>{icms}{ipi}</imposto>{inf}</det>'


def build_nfe(
    *,
    chave: str | None = CHAVE,
    versao: str = "4.00",
    numero: str | None = "1234",
    tp_amb: str = "1",
    cnpj: str | None = "12345678000199",
    cpf: str | None = None,
    fornecedor: str = "FORNECEDOR EXEMPLO LTDA",
    dets: list[str] | None = None,
    valor_total: str | None = "100.00",
    sections: tuple[str, ...] = ("ide", "emit", "det", "total"),
    proc: bool = True,
    prot_chave: str | None = None,
) -> bytes:
    """Build an NFe document (optionally wrapped in ``nfeProc``) as UTF-8 bytes."""
    if dets is None:
        dets = [make_det()]
    id_attr = f' Id="NFe{chave}"' if chave is not None else ""

    parts = []
    if "ide" in sections:
        parts.append(
            "<ide><cUF>35</cUF><mod>55</mod><serie>1</serie>"
            + (f"<nNF>{numero}</nNF>" if numero is not None else "")
            + f"<dhEmi>2024-01-15T10:30:00-03:00</dhEmi><tpAmb>{tp_amb}</tpAmb></ide>"
        )
    if "emit" in sections:
        parts.append(
            "<emit>"
            + (f"<CNPJ>{cnpj}</CNPJ>" if cnpj is not None else "")
            + (f"<CPF>{cpf}</CPF>" if cpf is not None else "")
            + f"<xNome>{fornecedor}</xNome><enderEmit><UF>SP</UF></enderEmit></emit>"
        )
    parts.append("<dest><CNPJ>98765432000155</CNPJ><xNome>LOJA DESTINO ME</xNome></dest>")
    if "det" in sections:
        parts.extend(dets)
    if "total" in sections:
        parts.append(
            "<total><ICMSTot>"
            + (f"<vNF>{valor_total}</vNF>" if valor_total is not None else "")
            + "</ICMSTot></total>"
        )

    nfe = f'<NFe xmlns="{NFE_NS}"><infNFe versao="{versao}"{id_attr}>{"".join(parts)}</infNFe></NFe>'
    if not proc:
        return nfe.encode("utf-8")
    prot = ""
    if prot_chave is not None:
        prot = f"<protNFe><infProt><chNFe>{prot_chave}</chNFe></infProt></protNFe>"
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<nfeProc xmlns="{NFE_NS}" versao="{versao}">{nfe}{prot}</nfeProc>'
    ).encode("utf-8")


# --- Store fixtures ---


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(f"sqlite:///{tmp_path / 'importador.sqlite'}")
    s.create_schema()
    yield s
    s.dispose()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def hub() -> SubscriberHub:
    return SubscriberHub()


# --- Persisted-shape helpers ---


def make_document(doc_id: str = CHAVE, chave: str | None = CHAVE, **kw) -> Document:
    defaults = dict(
        id=doc_id,
        chave=chave,
        numero="1234",
        data_emissao="2024-01-15T10:30:00-03:00",
        fornecedor="FORNECEDOR EXEMPLO LTDA",
        valor=Decimal("90.00"),
        itens=2,
    )
    defaults.update(kw)
    return Document(**defaults)


def make_items() -> list[LineItem]:
    return [
        LineItem(
            codigo="A",
            descricao="ITEM A",
            quantidade=Decimal("1"),
            valor_total=Decimal("60.00"),
            desconto=Decimal("6.00"),
            icms=IcmsStandard(grupo="ICMS00", cst="00", origem="0", valor=Decimal("10.80")),
        ),
        LineItem(codigo="B", descricao="ITEM B", valor_total=Decimal("40.00"), desconto=Decimal("4.00")),
    ]
