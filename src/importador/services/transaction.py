from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from importador.models.document import Document, LineItem
from importador.services.exceptions import ImmutableKeyError, classify_store_error
from importador.services.store import HEADER_COLUMNS, ITEM_COLUMNS, DocumentStore, chunked, utc_now

logger = logging.getLogger(__name__)

_HEADER_UPDATES = ",\n".join(
    f"{col} = EXCLUDED.{col}" for col in HEADER_COLUMNS if col not in ("id", "created_at")
)

UPSERT_HEADER = text(
    f"""
    INSERT INTO nfes ({", ".join(HEADER_COLUMNS)})
    VALUES ({", ".join(":" + col for col in HEADER_COLUMNS)})
    ON CONFLICT (id)
    DO UPDATE SET
    {_HEADER_UPDATES}
    """
)

DELETE_ITEMS = text("DELETE FROM produtos WHERE nfe_id = :nfe_id")

INSERT_ITEM = text(
    f"""
    INSERT INTO produtos ({", ".join(ITEM_COLUMNS)})
    VALUES ({", ".join(":" + col for col in ITEM_COLUMNS)})
    """
)


class IngestionTransaction:
    """Replace a document's header and full line-item set in one atomic unit.

    Existing items under the id are deleted, the header is upserted (keeping
    its original ``created_at``) and the new items inserted. Any failure rolls
    the whole unit back.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def execute(self, document: Document, items: Sequence[LineItem]) -> str:
        """Commit *document* with *items* and return the id written.

        Raises ImmutableKeyError when the id already holds a different access
        key, and PersistenceError (classified) when the store rejects the write.
        """
        now = utc_now()
        header = {**document.to_row(), "created_at": now, "updated_at": now}
        rows = [
            self.store.bind({**item.to_row(), "nfe_id": document.id}) for item in items
        ]
        try:
            with self.store.engine.begin() as conn:
                exists, stored = self.store.stored_key(conn, document.id)
                if exists and stored and stored != document.chave:
                    raise ImmutableKeyError(
                        f"NFe {document.id} já registrada com outra chave de acesso ({stored})"
                    )
                conn.execute(DELETE_ITEMS, {"nfe_id": document.id})
                conn.execute(UPSERT_HEADER, self.store.bind(header))
                for chunk in chunked(rows, 50):
                    conn.execute(INSERT_ITEM, chunk)
        except SQLAlchemyError as exc:
            logger.error("Transação da NFe %s desfeita: %s", document.id, exc)
            raise classify_store_error(exc) from exc

        logger.info("NFe %s gravada com %d item(ns)", document.id, len(rows))
        return document.id
