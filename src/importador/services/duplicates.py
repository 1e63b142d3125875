from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from importador.models.document import Document
from importador.services.exceptions import ImmutableKeyError
from importador.services.store import DocumentStore

logger = logging.getLogger(__name__)


class DuplicateStatus(Enum):
    NEW = "new"
    SAME_ID_UPDATE = "same_id_update"
    CONFIRMATION_REQUIRED = "confirmation_required"
    FORCED_REPLACE = "forced_replace"

    @property
    def may_persist(self) -> bool:
        return self is not DuplicateStatus.CONFIRMATION_REQUIRED


@dataclass(frozen=True)
class DuplicateCheck:
    status: DuplicateStatus
    existing: Optional[Document] = None


class DuplicateResolver:
    """Classify an incoming document against what the store already holds.

    The access key is the only deduplication key. A stored row with the same id
    is an update; a stored row with the same key under another id needs an
    explicit confirmation unless the caller forces the replacement.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def check(
        self, document_id: str, chave: Optional[str], *, force_replace: bool = False
    ) -> DuplicateCheck:
        same_id = self.store.find_by_id(document_id)
        if same_id is not None:
            if same_id.chave and chave and same_id.chave != chave:
                raise ImmutableKeyError(
                    f"NFe {document_id} já registrada com outra chave de acesso ({same_id.chave})"
                )
            return DuplicateCheck(DuplicateStatus.SAME_ID_UPDATE, same_id)

        if chave:
            same_key = self.store.find_by_key(chave, exclude_id=document_id)
            if same_key is not None:
                if force_replace:
                    logger.info(
                        "Chave %s já registrada como %s; gravando %s por substituição forçada",
                        chave,
                        same_key.id,
                        document_id,
                    )
                    return DuplicateCheck(DuplicateStatus.FORCED_REPLACE, same_key)
                return DuplicateCheck(DuplicateStatus.CONFIRMATION_REQUIRED, same_key)

        return DuplicateCheck(DuplicateStatus.NEW)
