from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class MalformedDocumentError(ValueError):
    """The input bytes could not be parsed as XML at all."""


class PersistenceError(Exception):
    """The store rejected a write; nothing from the operation was committed."""

    def __init__(self, message: str, category: str = "armazenamento") -> None:
        super().__init__(message)
        self.category = category


class ImmutableKeyError(PersistenceError):
    """A write would change the access key already stored under a document id."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category="chave_imutavel")


_INTEGRITY_CATEGORIES = (
    (("unique", "duplicate key"), "unicidade"),
    (("not null", "null value"), "campo_obrigatorio"),
    (("foreign key",), "referencia"),
)


def classify_store_error(exc: SQLAlchemyError) -> PersistenceError:
    """Map a SQLAlchemy failure to a user-facing PersistenceError category."""
    message = str(getattr(exc, "orig", None) or exc)
    if isinstance(exc, IntegrityError):
        lowered = message.lower()
        for needles, category in _INTEGRITY_CATEGORIES:
            if any(n in lowered for n in needles):
                return PersistenceError(message, category=category)
        return PersistenceError(message, category="integridade")
    return PersistenceError(message, category="armazenamento")
