"""Post-commit side effects: read-cache invalidation and subscriber fan-out.

Hooks run only after a committed write. Each one is isolated: a failure is
logged and the remaining hooks still run.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from importador.config import CACHE_DETAIL_KEY, CACHE_LIST_PATTERN

logger = logging.getLogger(__name__)

Event = dict[str, Any]
PostCommitHook = Callable[[Event], None]


class CacheBackend(Protocol):
    def invalidate_pattern(self, pattern: str) -> int: ...

    def delete(self, key: str) -> None: ...


class Notifier(Protocol):
    def emit(self, event: Event) -> None: ...


def make_event(action: str, document_id: str, summary: dict[str, Any]) -> Event:
    return {"action": action, "id": document_id, "summary": summary}


def cache_invalidation_hook(cache: CacheBackend) -> PostCommitHook:
    def invalidate(event: Event) -> None:
        cache.invalidate_pattern(CACHE_LIST_PATTERN)
        cache.delete(CACHE_DETAIL_KEY.format(id=event["id"]))

    return invalidate


def notification_hook(notifier: Notifier) -> PostCommitHook:
    def notify(event: Event) -> None:
        notifier.emit(event)

    return notify


def run_post_commit_hooks(hooks: Iterable[PostCommitHook], event: Event) -> int:
    """Run every hook; returns how many failed."""
    failures = 0
    for hook in hooks:
        try:
            hook(event)
        except Exception:
            failures += 1
            logger.warning(
                "Falha no pós-processamento (%s) da NFe %s",
                event.get("action"),
                event.get("id"),
                exc_info=True,
            )
    return failures


class MemoryCache:
    """In-process read cache with glob-style pattern invalidation."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
        for key in keys:
            del self._data[key]
        return len(keys)


class SubscriberHub:
    """Fan-out to registered callables; delivery is not acknowledged."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[Event], None]] = []

    def subscribe(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.warning("Assinante falhou ao receber evento %s", event.get("action"), exc_info=True)
