"""Relational store for NFe headers and line items, using SQLAlchemy Core."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from importador.models.document import Document, LineItem, PricingSettings
from importador.services.exceptions import classify_store_error
from importador.utils.validators import validate_hidden_items

logger = logging.getLogger(__name__)

metadata = MetaData()

nfes = Table(
    "nfes",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("chave", String(44)),
    Column("numero", String(20), nullable=False, server_default=""),
    Column("serie", String(10), nullable=False, server_default=""),
    Column("data_emissao", String(40), nullable=False, server_default=""),
    Column("fornecedor", String(255), nullable=False, server_default=""),
    Column("cnpj_fornecedor", String(14), nullable=False, server_default=""),
    Column("valor", Numeric(15, 2), nullable=False, server_default="0"),
    Column("itens", Integer, nullable=False, server_default="0"),
    Column("imposto_entrada", Numeric(7, 2), nullable=False, server_default="12"),
    Column("markup_primario", Numeric(7, 2), nullable=False, server_default="160"),
    Column("markup_secundario", Numeric(7, 2), nullable=False, server_default="130"),
    Column("arredondamento", String(8), nullable=False, server_default="none"),
    Column("valor_frete", Numeric(15, 2), nullable=False, server_default="0"),
    Column("itens_ocultos", Text, nullable=False, server_default="[]"),
    Column("mostrar_ocultos", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_nfes_fornecedor", "fornecedor"),
    Index("idx_nfes_data", "data_emissao"),
    Index("idx_nfes_chave", "chave"),
)

produtos = Table(
    "produtos",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nfe_id", String(64), ForeignKey("nfes.id", ondelete="CASCADE"), nullable=False),
    Column("codigo", String(60), nullable=False),
    Column("descricao", Text, nullable=False),
    Column("ncm", String(10)),
    Column("cfop", String(4)),
    Column("unidade", String(6)),
    Column("quantidade", Numeric(15, 4)),
    Column("valor_unitario", Numeric(21, 10)),
    Column("valor_total", Numeric(15, 2)),
    Column("desconto", Numeric(21, 10)),
    Column("valor_liquido", Numeric(21, 10)),
    Column("icms_grupo", String(12)),
    Column("cst", String(4)),
    Column("origem", String(1)),
    Column("base_icms", Numeric(15, 2)),
    Column("valor_icms", Numeric(15, 2)),
    Column("aliquota_icms", Numeric(7, 4)),
    Column("base_ipi", Numeric(15, 2)),
    Column("valor_ipi", Numeric(15, 2)),
    Column("aliquota_ipi", Numeric(7, 4)),
    Column("ean", String(14)),
    Column("referencia", String(60)),
    Column("marca", String(120)),
    Column("imagem_url", Text),
    Column("descricao_complementar", Text),
    Column("custo_extra", Numeric(21, 10)),
    Column("frete_proporcional", Numeric(21, 10)),
    Index("idx_produtos_nfe_id", "nfe_id"),
    Index("idx_produtos_codigo", "codigo"),
)

HEADER_COLUMNS = tuple(c.name for c in nfes.columns)
ITEM_COLUMNS = tuple(c.name for c in produtos.columns if c.name != "id")

EDITABLE_SETTINGS = frozenset(
    {
        "imposto_entrada",
        "markup_primario",
        "markup_secundario",
        "arredondamento",
        "valor_frete",
        "itens_ocultos",
        "mostrar_ocultos",
    }
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DocumentStore:
    """Owns the engine; every write runs inside ``engine.begin()``."""

    def __init__(self, url: str):
        self.engine: Engine = create_engine(url, future=True, pool_pre_ping=True)
        self.is_sqlite = self.engine.dialect.name == "sqlite"
        if self.is_sqlite:
            # Cascades on ``produtos`` need the pragma on every connection
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(self.engine, expire_on_commit=False, future=True)

    def dispose(self) -> None:
        self.engine.dispose()

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def bind(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert Decimal to float for SQLite compatibility."""
        if not self.is_sqlite:
            return row
        return {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}

    # --- reads ---

    def find_by_id(self, document_id: str) -> Optional[Document]:
        with self.Session() as session:
            row = session.execute(
                text("SELECT * FROM nfes WHERE id = :id"), {"id": document_id}
            ).mappings().first()
            return Document.from_row(dict(row)) if row else None

    def find_by_key(self, chave: str, exclude_id: Optional[str] = None) -> Optional[Document]:
        """Most recently updated document carrying *chave*, other than *exclude_id*."""
        params: dict[str, Any] = {"chave": chave}
        exclusion = ""
        if exclude_id is not None:
            exclusion = "AND id <> :exclude_id"
            params["exclude_id"] = exclude_id
        with self.Session() as session:
            row = session.execute(
                text(
                    f"""
                    SELECT * FROM nfes
                    WHERE chave = :chave {exclusion}
                    ORDER BY updated_at DESC, id
                    LIMIT 1
                    """
                ),
                params,
            ).mappings().first()
            return Document.from_row(dict(row)) if row else None

    def get_document(self, document_id: str) -> Optional[Document]:
        """Header plus its line items in insertion order."""
        with self.Session() as session:
            row = session.execute(
                text("SELECT * FROM nfes WHERE id = :id"), {"id": document_id}
            ).mappings().first()
            if not row:
                return None
            items = session.execute(
                text("SELECT * FROM produtos WHERE nfe_id = :id ORDER BY id"),
                {"id": document_id},
            ).mappings()
            return Document.from_row(
                dict(row), produtos=tuple(LineItem.from_row(dict(i)) for i in items)
            )

    def count_items(self, document_id: str) -> int:
        with self.Session() as session:
            return session.execute(
                text("SELECT COUNT(*) FROM produtos WHERE nfe_id = :id"), {"id": document_id}
            ).scalar_one()

    def list_documents(self) -> list[dict[str, Any]]:
        """Headers with item aggregates, newest first."""
        with self.Session() as session:
            rows = session.execute(
                text(
                    """
                    SELECT n.id, n.chave, n.numero, n.data_emissao, n.fornecedor, n.valor,
                           n.itens, n.created_at, n.updated_at,
                           COUNT(p.id) AS produtos,
                           COALESCE(SUM(p.valor_total), 0) AS valor_bruto,
                           COALESCE(SUM(p.desconto), 0) AS desconto_total,
                           COALESCE(SUM(p.valor_liquido), 0) AS valor_liquido
                    FROM nfes n
                    LEFT JOIN produtos p ON p.nfe_id = n.id
                    GROUP BY n.id, n.chave, n.numero, n.data_emissao, n.fornecedor, n.valor,
                             n.itens, n.created_at, n.updated_at
                    ORDER BY n.created_at DESC, n.id
                    """
                )
            ).mappings()
            return [dict(row) for row in rows]

    # --- writes outside the ingestion transaction ---

    def update_settings(self, document_id: str, changes: dict[str, Any]) -> Optional[Document]:
        """Apply pricing and hidden-item changes field by field.

        Unspecified fields keep their stored values. Returns the updated header,
        or None when *document_id* is unknown. Raises ValueError on invalid
        values and PersistenceError when the store rejects the write.
        """
        unknown = set(changes) - EDITABLE_SETTINGS
        if unknown:
            raise ValueError(f"Campo não editável: {', '.join(sorted(unknown))}")

        current = self.find_by_id(document_id)
        if current is None:
            return None

        pricing = PricingSettings.from_dict({**current.pricing.to_dict(), **changes})
        values: dict[str, Any] = {**pricing.to_dict(), "id": document_id, "updated_at": utc_now()}
        values["itens_ocultos"] = json.dumps(
            validate_hidden_items(changes.get("itens_ocultos", list(current.itens_ocultos)))
        )
        values["mostrar_ocultos"] = bool(changes.get("mostrar_ocultos", current.mostrar_ocultos))

        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        UPDATE nfes SET
                            imposto_entrada = :imposto_entrada,
                            markup_primario = :markup_primario,
                            markup_secundario = :markup_secundario,
                            arredondamento = :arredondamento,
                            valor_frete = :valor_frete,
                            itens_ocultos = :itens_ocultos,
                            mostrar_ocultos = :mostrar_ocultos,
                            updated_at = :updated_at
                        WHERE id = :id
                        """
                    ),
                    self.bind(values),
                )
        except SQLAlchemyError as exc:
            raise classify_store_error(exc) from exc

        logger.info("Configurações da NFe %s atualizadas: %s", document_id, sorted(changes))
        return self.find_by_id(document_id)

    def delete_document(self, document_id: str) -> bool:
        """Delete a header; its line items go with it through the FK cascade."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    text("DELETE FROM nfes WHERE id = :id"), {"id": document_id}
                )
        except SQLAlchemyError as exc:
            raise classify_store_error(exc) from exc
        deleted = result.rowcount > 0
        if deleted:
            logger.info("NFe %s excluída", document_id)
        return deleted

    # --- helpers for the ingestion transaction ---

    def stored_key(self, conn: Connection, document_id: str) -> tuple[bool, Optional[str]]:
        """Return (exists, chave) for *document_id* within an open transaction."""
        row = conn.execute(
            text("SELECT chave FROM nfes WHERE id = :id"), {"id": document_id}
        ).first()
        return (row is not None, row[0] if row is not None else None)


def chunked(items: Iterable, chunk_size: int):
    bucket = []
    for item in items:
        bucket.append(item)
        if len(bucket) >= chunk_size:
            yield bucket
            bucket = []
    if bucket:
        yield bucket
