"""NFe ingestion pipeline.

raw bytes -> structural validation -> line extraction -> discount/freight
allocation -> duplicate check -> atomic write -> post-commit hooks.

Validation failures and duplicate conflicts come back as result objects the
caller branches on. Store failures are raised as PersistenceError.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from importador.config import ALLOCATION_EPSILON
from importador.models.document import Document, LineItem, PricingSettings
from importador.models.results import IngestionResult, ValidationReport
from importador.services.allocation import allocate_discounts, allocate_freight, net_total
from importador.services.duplicates import DuplicateCheck, DuplicateResolver, DuplicateStatus
from importador.services.exceptions import MalformedDocumentError
from importador.services.extractor import extract_line_items
from importador.services.hooks import PostCommitHook, make_event, run_post_commit_hooks
from importador.services.store import DocumentStore
from importador.services.structural_validator import validate_document
from importador.services.transaction import IngestionTransaction
from importador.services.xml_reader import parse_document

logger = logging.getLogger(__name__)


def validate_raw(raw: bytes | str) -> ValidationReport:
    """Parse and structurally validate raw NFe bytes; malformed XML becomes a failed report."""
    try:
        root = parse_document(raw)
    except MalformedDocumentError as exc:
        return ValidationReport(errors=[str(exc)])
    return validate_document(root)


class ResolutionState(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class PreparedIngestion:
    """A validated, extracted and allocated document waiting to be written."""

    document: Document
    items: tuple[LineItem, ...]
    status: DuplicateStatus
    warnings: tuple[str, ...] = ()


def header_echo(document: Document) -> dict[str, Any]:
    return {
        "chave": document.chave,
        "numero": document.numero,
        "serie": document.serie,
        "data_emissao": document.data_emissao,
        "fornecedor": document.fornecedor,
        "cnpj_fornecedor": document.cnpj_fornecedor,
        "valor": document.valor,
    }


@dataclass
class PendingResolution:
    """Duplicate conflict halted before any write.

    ``resolve(True)`` writes the incoming document under its own id, leaving
    the stored one untouched; ``resolve(False)`` discards it. Either call moves
    the state to RESOLVED, and a second call raises RuntimeError.
    """

    pipeline: IngestionPipeline
    prepared: PreparedIngestion
    existing: Document
    state: ResolutionState = ResolutionState.PENDING
    result: Optional[IngestionResult] = field(default=None, init=False)

    @property
    def incoming(self) -> Document:
        return self.prepared.document

    def resolve(self, confirm: bool) -> Optional[IngestionResult]:
        if self.state is ResolutionState.RESOLVED:
            raise RuntimeError("Conflito de duplicidade já resolvido")
        self.state = ResolutionState.RESOLVED
        if not confirm:
            logger.info(
                "Substituição de %s recusada; NFe %s descartada",
                self.existing.id,
                self.incoming.id,
            )
            return None
        forced = PreparedIngestion(
            document=self.prepared.document,
            items=self.prepared.items,
            status=DuplicateStatus.FORCED_REPLACE,
            warnings=self.prepared.warnings,
        )
        self.result = self.pipeline.commit(forced)
        return self.result

    def to_dict(self) -> dict[str, Any]:
        incoming = self.incoming.summary()
        incoming.pop("id")
        return {
            "is_duplicate": True,
            "confirmation_required": self.state is ResolutionState.PENDING,
            "existing": self.existing.summary(),
            "incoming": incoming,
        }


IngestOutcome = Union[ValidationReport, PendingResolution, IngestionResult]


class IngestionPipeline:
    """Store and hooks are injected; nothing here reaches for module-level handles."""

    def __init__(
        self,
        store: DocumentStore,
        hooks: Iterable[PostCommitHook] = (),
        default_pricing: Optional[PricingSettings] = None,
    ):
        self.store = store
        self.hooks = list(hooks)
        self.default_pricing = default_pricing or PricingSettings()
        self.resolver = DuplicateResolver(store)
        self.transaction = IngestionTransaction(store)

    def validate(self, raw: bytes | str) -> ValidationReport:
        """Structural validation only; never writes."""
        return validate_raw(raw)

    def ingest(
        self,
        raw: bytes | str,
        *,
        document_id: Optional[str] = None,
        force_replace: bool = False,
        pricing: Optional[Union[PricingSettings, dict]] = None,
    ) -> IngestOutcome:
        """Run the full pipeline for one document.

        *document_id* defaults to the access key. Returns a failed
        ValidationReport, a PendingResolution when the key is already stored
        under another id (and *force_replace* is off), or the IngestionResult of
        the committed write.
        """
        try:
            root = parse_document(raw)
        except MalformedDocumentError as exc:
            logger.info("XML rejeitado: %s", exc)
            return ValidationReport(errors=[str(exc)])

        report = validate_document(root)
        if not report.is_valid:
            return report

        extraction = extract_line_items(root)
        chave = report.info["chave"]
        document_id = document_id or chave
        check = self.resolver.check(document_id, chave, force_replace=force_replace)

        prepared = self.prepare(
            report, extraction.items, document_id, check, pricing, extraction.warnings
        )

        if check.status is DuplicateStatus.CONFIRMATION_REQUIRED:
            logger.info(
                "Chave %s já registrada como %s; confirmação necessária para %s",
                chave,
                check.existing.id,
                document_id,
            )
            return PendingResolution(self, prepared, check.existing)
        return self.commit(prepared)

    def _resolve_pricing(
        self, check: DuplicateCheck, pricing: Optional[Union[PricingSettings, dict]]
    ) -> tuple[PricingSettings, tuple[int, ...], bool]:
        existing = check.existing if check.status is DuplicateStatus.SAME_ID_UPDATE else None
        hidden = existing.itens_ocultos if existing else ()
        show_hidden = existing.mostrar_ocultos if existing else False
        if isinstance(pricing, dict):
            return PricingSettings.from_dict(pricing), hidden, show_hidden
        if pricing is not None:
            return pricing, hidden, show_hidden
        if existing is not None:
            return existing.pricing, hidden, show_hidden
        return self.default_pricing, (), False

    def prepare(
        self,
        report: ValidationReport,
        items: Sequence[LineItem],
        document_id: str,
        check: DuplicateCheck,
        pricing: Optional[Union[PricingSettings, dict]] = None,
        line_warnings: Sequence[str] = (),
    ) -> PreparedIngestion:
        """Allocate discount and freight over *items* and build the header.

        Without a declared total (``vNF``) the extracted line discounts are kept
        and the header value is their net sum.
        """
        info = report.info
        settings, hidden, show_hidden = self._resolve_pricing(check, pricing)

        declared = info.get("valor_total")
        if declared is None:
            allocated = list(items)
            declared = net_total(allocated)
        else:
            allocated = allocate_discounts(items, declared)
        if settings.valor_frete > 0:
            allocated = allocate_freight(allocated, settings.valor_frete, settings.imposto_entrada)

        warnings = [*report.warnings, *line_warnings]
        net = net_total(allocated)
        if abs(net - declared) > ALLOCATION_EPSILON:
            warnings.append(
                f"Soma líquida dos itens ({net:.2f}) difere do valor total declarado ({declared:.2f})"
            )

        document = Document(
            id=document_id,
            chave=info.get("chave"),
            numero=str(info.get("numero", "")),
            serie=info.get("serie", ""),
            data_emissao=info.get("data_emissao", ""),
            fornecedor=info.get("fornecedor", ""),
            cnpj_fornecedor=info.get("cnpj_emitente") or info.get("cpf_emitente", ""),
            valor=declared,
            itens=len(allocated),
            pricing=settings,
            itens_ocultos=hidden,
            mostrar_ocultos=show_hidden,
        )
        return PreparedIngestion(
            document=document,
            items=tuple(allocated),
            status=check.status,
            warnings=tuple(warnings),
        )

    def commit(self, prepared: PreparedIngestion) -> IngestionResult:
        """Write a prepared document, then run the post-commit hooks."""
        if not prepared.status.may_persist:
            raise RuntimeError("Confirmação de duplicidade pendente")
        document = prepared.document
        final_id = self.transaction.execute(document, prepared.items)
        action = "updated" if prepared.status is DuplicateStatus.SAME_ID_UPDATE else "created"
        run_post_commit_hooks(self.hooks, make_event(action, final_id, document.summary()))
        return IngestionResult(
            id=final_id,
            action=action,
            header=header_echo(document),
            itens_persistidos=len(prepared.items),
            warnings=prepared.warnings,
        )

    def update_settings(self, document_id: str, **changes: Any) -> Optional[Document]:
        """Edit pricing or hidden-item bookkeeping. Returns None for an unknown id."""
        document = self.store.update_settings(document_id, changes)
        if document is not None:
            run_post_commit_hooks(self.hooks, make_event("updated", document.id, document.summary()))
        return document

    def delete(self, document_id: str) -> bool:
        """Delete a document and, by cascade, its line items."""
        existing = self.store.find_by_id(document_id)
        if existing is None:
            return False
        deleted = self.store.delete_document(document_id)
        if deleted:
            run_post_commit_hooks(self.hooks, make_event("deleted", document_id, existing.summary()))
        return deleted
