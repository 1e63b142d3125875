from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ValidationReport:
    """Outcome of the structural checks. Errors block persistence; warnings never do."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    info: dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "info": dict(self.info),
        }


@dataclass(frozen=True)
class IngestionResult:
    """A committed ingestion: final id, echoed header and persisted line count."""

    id: str
    action: str  # created | updated
    header: dict[str, Any]
    itens_persistidos: int
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            **self.header,
            "itens_persistidos": self.itens_persistidos,
            "warnings": list(self.warnings),
        }
