"""Keyed query cache with superseding reads.

Read path:

1. ``fetch(key, fetcher)`` always re-fetches; there is no freshness window.
2. While a request is in flight the entry reports ``is_loading`` and keeps
   exposing the previous value.
3. A successful result is committed and every listener of that key notified.
4. A failure records ``error`` but keeps the previous value visible.
5. Each read takes a new ticket. Only the holder of the entry's current ticket
   may commit, so a late response from a superseded read is dropped. The
   superseded request is aborted through its :class:`AbortSignal`.

Every value write bumps the entry's ``version`` so a mutation can tell whether
a key changed after its optimistic patch.

Values stored here are treated as immutable: writers replace values, they never
patch a value that was previously handed out.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import time
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Awaitable, Callable, Iterable

from blinker import Signal
from cachetools import LRUCache

from heyso.cache.keys import QueryKey
from heyso.client.errors import RequestAborted
from heyso.client.http import AbortSignal

logger = getLogger(__name__)

Fetcher = Callable[[AbortSignal], Awaitable[Any]]
Updater = Callable[[Any], Any]
Selector = QueryKey | Iterable[QueryKey]
CacheListener = Callable[..., None]

EVENT_LOADING = "loading"
EVENT_SUCCESS = "success"
EVENT_ERROR = "error"
EVENT_UPDATED = "updated"
EVENT_INVALIDATED = "invalidated"
EVENT_REMOVED = "removed"
EVENT_RESTORED = "restored"


@dataclass(slots=True)
class CacheEntry:
    key: QueryKey
    value: Any = None
    has_value: bool = False
    last_fetched_at: float | None = None
    error: BaseException | None = None
    is_loading: bool = False
    invalidated: bool = False
    ticket: int = 0
    version: int = 0
    signal: AbortSignal | None = None
    fetcher: Fetcher | None = None


@dataclass(frozen=True, slots=True)
class QueryState:
    key: QueryKey
    data: Any = None
    has_data: bool = False
    is_loading: bool = False
    error: BaseException | None = None
    is_stale: bool = True
    is_disabled: bool = False
    last_fetched_at: float | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def status(self) -> str:
        if self.is_loading:
            return "loading"
        if self.error is not None:
            return "error"
        if self.has_data:
            return "success"
        return "idle"


@dataclass(frozen=True, slots=True)
class _SnapshotItem:
    present: bool
    value: Any = None
    has_value: bool = False
    last_fetched_at: float | None = None
    error: BaseException | None = None
    invalidated: bool = False


@dataclass(frozen=True, slots=True)
class CacheSnapshot:
    items: tuple[tuple[QueryKey, _SnapshotItem], ...]

    @property
    def keys(self) -> tuple[QueryKey, ...]:
        return tuple(key for key, _ in self.items)


class QueryCache:
    """Hold the last known good value per :class:`QueryKey`."""

    def __init__(self, *, maxsize: int = 512) -> None:
        self._entries: LRUCache[QueryKey, CacheEntry] = LRUCache(maxsize=maxsize)
        self._tickets = itertools.count(1)
        self._versions = itertools.count(1)
        self._disabled: set[str] = set()
        self.updated = Signal("query_cache.updated")

    # -- observation -----------------------------------------------------

    def subscribe(
        self, key: QueryKey | None, listener: CacheListener
    ) -> Callable[[], None]:
        """Connect ``listener`` to one key (or every key when ``key`` is None).

        Listeners are called as ``listener(sender, key=..., event=..., state=...)``.
        The returned callable disconnects the listener.
        """

        if key is None:
            self.updated.connect(listener, weak=False)
        else:
            self.updated.connect(listener, sender=key.serialize(), weak=False)

        def _unsubscribe() -> None:
            if key is None:
                self.updated.disconnect(listener)
            else:
                self.updated.disconnect(listener, sender=key.serialize())

        return _unsubscribe

    def _notify(self, key: QueryKey, event: str) -> None:
        if not self.updated.receivers:
            return
        state = self.state(key)
        try:
            self.updated.send(key.serialize(), key=key, event=event, state=state)
        except Exception:  # pragma: no cover - listener bugs must not break the cache
            logger.exception("Cache listener failed for %s (%s)", key, event)

    # -- reads -------------------------------------------------------------

    def _select(self, selector: Selector) -> list[QueryKey]:
        selectors = [selector] if isinstance(selector, QueryKey) else list(selector)
        return [
            key
            for key in list(self._entries.keys())
            if any(key.matches(prefix) for prefix in selectors)
        ]

    def keys(self) -> list[QueryKey]:
        return list(self._entries.keys())

    def is_disabled(self, key: QueryKey) -> bool:
        return key.namespace in self._disabled

    def state(self, key: QueryKey) -> QueryState:
        entry = self._entries.get(key)
        disabled = self.is_disabled(key)
        if entry is None:
            return QueryState(key=key, is_disabled=disabled)
        return QueryState(
            key=key,
            data=entry.value,
            has_data=entry.has_value,
            is_loading=entry.is_loading,
            error=entry.error,
            is_stale=True,
            is_disabled=disabled,
            last_fetched_at=entry.last_fetched_at,
        )

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return default
        return entry.value

    def version(self, key: QueryKey) -> int | None:
        """Write counter of ``key``; None when the key holds no entry."""

        entry = self._entries.get(key)
        return None if entry is None else entry.version

    def is_invalidated(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.invalidated

    def _entry(self, key: QueryKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        return entry

    def _current(self, key: QueryKey, ticket: int) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.ticket != ticket:
            return None
        return entry

    def _supersede(self, entry: CacheEntry, reason: str) -> None:
        if entry.signal is not None:
            entry.signal.abort(reason)
        entry.signal = None
        entry.ticket = next(self._tickets)
        entry.is_loading = False

    async def fetch(self, key: QueryKey, fetcher: Fetcher) -> QueryState:
        """Run ``fetcher`` for ``key`` and commit its result if still current."""

        if self.is_disabled(key):
            logger.debug("Skipping fetch for disabled key %s", key)
            return self.state(key)

        entry = self._entry(key)
        if entry.signal is not None:
            entry.signal.abort("superseded")
        ticket = next(self._tickets)
        signal = AbortSignal()
        entry.ticket = ticket
        entry.signal = signal
        entry.fetcher = fetcher
        entry.is_loading = True
        self._notify(key, EVENT_LOADING)

        try:
            value = await fetcher(signal)
        except RequestAborted:
            current = self._current(key, ticket)
            if current is not None:
                current.is_loading = False
                current.signal = None
                self._notify(key, EVENT_UPDATED)
            logger.debug("Read for %s aborted", key)
            return self.state(key)
        except asyncio.CancelledError:
            current = self._current(key, ticket)
            if current is not None:
                current.is_loading = False
                current.signal = None
            raise
        except Exception as exc:
            current = self._current(key, ticket)
            if current is None:
                logger.debug("Dropping error from superseded read for %s", key)
                return self.state(key)
            current.error = exc
            current.is_loading = False
            current.signal = None
            logger.debug("Read for %s failed: %s", key, exc)
            self._notify(key, EVENT_ERROR)
            return self.state(key)

        current = self._current(key, ticket)
        if current is None:
            logger.debug("Dropping result from superseded read for %s", key)
            return self.state(key)
        current.value = value
        current.has_value = True
        current.version = next(self._versions)
        current.error = None
        current.is_loading = False
        current.invalidated = False
        current.signal = None
        current.last_fetched_at = time.time()
        self._notify(key, EVENT_SUCCESS)
        return self.state(key)

    async def refetch(self, selector: Selector) -> list[QueryState]:
        """Re-run the last fetcher of every matching entry that has one."""

        targets: list[tuple[QueryKey, Fetcher]] = []
        for key in self._select(selector):
            entry = self._entries.get(key)
            if entry is not None and entry.fetcher is not None:
                targets.append((key, entry.fetcher))
        if not targets:
            return []
        return list(
            await asyncio.gather(*(self.fetch(key, fetcher) for key, fetcher in targets))
        )

    # -- writes ------------------------------------------------------------

    def set_data(self, key: QueryKey, value: Any | Updater) -> Any:
        """Replace the value for ``key``; callables receive the current value."""

        entry = self._entry(key)
        if callable(value):
            current = entry.value if entry.has_value else None
            value = value(current)
        entry.value = value
        entry.has_value = True
        entry.version = next(self._versions)
        entry.error = None
        self._notify(key, EVENT_UPDATED)
        return value

    def update_data(self, key: QueryKey, updater: Updater) -> bool:
        """Apply ``updater`` only when ``key`` already holds a value."""

        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return False
        entry.value = updater(entry.value)
        entry.version = next(self._versions)
        self._notify(key, EVENT_UPDATED)
        return True

    def cancel(self, selector: Selector) -> None:
        """Abort in-flight reads so their results can no longer be committed."""

        for key in self._select(selector):
            entry = self._entries.get(key)
            if entry is not None and entry.is_loading:
                self._supersede(entry, "cancelled")
                self._notify(key, EVENT_UPDATED)

    def invalidate(self, selector: Selector) -> list[QueryKey]:
        """Mark matching entries stale so the next read must re-fetch them."""

        matched = self._select(selector)
        for key in matched:
            entry = self._entries.get(key)
            if entry is None:
                continue
            self._supersede(entry, "invalidated")
            entry.invalidated = True
            self._notify(key, EVENT_INVALIDATED)
        if matched:
            logger.debug("Invalidated %d cache key(s)", len(matched))
        return matched

    def remove(self, selector: Selector) -> list[QueryKey]:
        matched = self._select(selector)
        for key in matched:
            entry = self._entries.pop(key, None)
            if entry is not None and entry.signal is not None:
                entry.signal.abort("removed")
            self._notify(key, EVENT_REMOVED)
        return matched

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            if entry.signal is not None:
                entry.signal.abort("cleared")
        self._entries.clear()

    def disable(self, *namespaces: str) -> None:
        self._disabled.update(namespaces)

    def enable(self, *namespaces: str) -> None:
        self._disabled.difference_update(namespaces)

    # -- snapshots -----------------------------------------------------------

    def snapshot(self, keys: Iterable[QueryKey]) -> CacheSnapshot:
        items: list[tuple[QueryKey, _SnapshotItem]] = []
        seen: set[QueryKey] = set()
        for key in keys:
            if key in seen:
                continue
            seen.add(key)
            entry = self._entries.get(key)
            if entry is None:
                items.append((key, _SnapshotItem(present=False)))
                continue
            items.append(
                (
                    key,
                    _SnapshotItem(
                        present=True,
                        value=copy.deepcopy(entry.value),
                        has_value=entry.has_value,
                        last_fetched_at=entry.last_fetched_at,
                        error=entry.error,
                        invalidated=entry.invalidated,
                    ),
                )
            )
        return CacheSnapshot(items=tuple(items))

    def restore(
        self, snapshot: CacheSnapshot, keys: Iterable[QueryKey] | None = None
    ) -> None:
        """Put keys of ``snapshot`` (all of them by default) back as captured."""

        selected = None if keys is None else set(keys)
        for key, item in snapshot.items:
            if selected is not None and key not in selected:
                continue
            if not item.present:
                entry = self._entries.pop(key, None)
                if entry is not None and entry.signal is not None:
                    entry.signal.abort("restored")
                self._notify(key, EVENT_RESTORED)
                continue
            entry = self._entry(key)
            entry.value = copy.deepcopy(item.value)
            entry.has_value = item.has_value
            entry.version = next(self._versions)
            entry.last_fetched_at = item.last_fetched_at
            entry.error = item.error
            entry.invalidated = item.invalidated
            self._notify(key, EVENT_RESTORED)


__all__ = [
    "CacheEntry",
    "CacheSnapshot",
    "QueryCache",
    "QueryState",
]
