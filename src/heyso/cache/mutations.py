"""Optimistic mutations with exact rollback.

A :class:`MutationDescriptor` describes one mutation as data: which keys it
touches, how to patch them before the server answers, how to call the server,
how to reconcile the answer, and which derived keys must be invalidated
afterwards. :class:`MutationRunner` executes every descriptor the same way:

1. cancel in-flight reads of the affected keys and snapshot them;
2. apply the optimistic patch;
3. call the server;
4. on success reconcile each affected key, then invalidate/remove derived keys;
5. on failure restore the snapshot of every affected key the mutation still
   owns, and raise. A key written since the optimistic patch (by an overlapping
   mutation or a read) is not restored: ``rollback`` strips this mutation's own
   patch from it, or, without a ``rollback``, the key is invalidated.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Awaitable, Callable, Mapping

from heyso.cache.keys import QueryKey
from heyso.cache.query_cache import CacheSnapshot, QueryCache
from heyso.client.errors import MutationFailed, RequestAborted
from heyso.client.http import AbortSignal, ApiResult

logger = getLogger(__name__)

ServerCall = Callable[[AbortSignal], Awaitable[ApiResult]]
Patch = Callable[[QueryKey, Any], Any]
Reconcile = Callable[[QueryKey, Any, Any], Any]
SuccessHook = Callable[[Any], Awaitable[None] | None]

DEFAULT_ERROR_MESSAGE = "요청을 처리하지 못했습니다."


@dataclass(slots=True)
class MutationDescriptor:
    """Everything the runner needs to execute one mutation.

    ``apply(key, current)`` returns the optimistic value for an affected key and
    ``reconcile(key, response_data, current)`` the confirmed one. Both are only
    called for keys that already hold a value (``apply`` also sees absent keys, as
    ``None``, when ``seed_missing`` is set), and both must return new values
    rather than modifying ``current``. ``rollback(key, current)`` removes this
    mutation's patch from a value that other writers changed in the meantime.
    """

    name: str
    server_call: ServerCall
    affected_keys: tuple[QueryKey, ...] = ()
    apply: Patch | None = None
    reconcile: Reconcile | None = None
    rollback: Patch | None = None
    invalidate: tuple[QueryKey, ...] = ()
    remove: tuple[QueryKey, ...] = ()
    error_message: str = DEFAULT_ERROR_MESSAGE
    seed_missing: bool = False
    on_success: SuccessHook | None = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MutationResult:
    name: str
    data: Any
    status: int


class MutationRunner:
    """Execute :class:`MutationDescriptor` objects against a :class:`QueryCache`."""

    def __init__(self, cache: QueryCache) -> None:
        self.cache = cache
        self._pending: dict[str, int] = {}

    def is_pending(self, name: str) -> bool:
        return self._pending.get(name, 0) > 0

    def _patch(self, keys: tuple[QueryKey, ...], fn: Callable[[QueryKey, Any], Any]) -> None:
        for key in keys:
            self.cache.update_data(key, lambda current, key=key: fn(key, current))

    def _roll_back(
        self,
        descriptor: MutationDescriptor,
        snapshot: CacheSnapshot,
        written: Mapping[QueryKey, int | None],
    ) -> None:
        owned = [key for key, version in written.items() if self.cache.version(key) == version]
        self.cache.restore(snapshot, owned)
        moved = tuple(key for key in written if key not in owned)
        if not moved:
            return
        if descriptor.rollback is not None:
            self._patch(moved, descriptor.rollback)
        else:
            self.cache.invalidate(moved)
        logger.debug(
            "Mutation %s: %d key(s) changed since the optimistic patch",
            descriptor.name,
            len(moved),
        )

    async def run(
        self, descriptor: MutationDescriptor, *, signal: AbortSignal | None = None
    ) -> MutationResult:
        signal = signal or AbortSignal()
        affected = descriptor.affected_keys
        self.cache.cancel(affected)
        snapshot = self.cache.snapshot(affected)
        self._pending[descriptor.name] = self._pending.get(descriptor.name, 0) + 1

        try:
            if descriptor.apply is not None and descriptor.seed_missing:
                for key in affected:
                    self.cache.set_data(
                        key, lambda current, key=key: descriptor.apply(key, current)
                    )
            elif descriptor.apply is not None:
                self._patch(affected, descriptor.apply)
            written = {key: self.cache.version(key) for key in affected}

            try:
                result = await descriptor.server_call(signal)
            except RequestAborted:
                self._roll_back(descriptor, snapshot, written)
                logger.debug("Mutation %s aborted; snapshot restored", descriptor.name)
                raise
            except asyncio.CancelledError:
                self._roll_back(descriptor, snapshot, written)
                raise
            except Exception as exc:
                self._roll_back(descriptor, snapshot, written)
                logger.warning(
                    "Mutation %s raised; snapshot restored", descriptor.name, exc_info=True
                )
                raise MutationFailed(descriptor.error_message, cause=exc) from exc

            if not result.ok:
                self._roll_back(descriptor, snapshot, written)
                logger.warning(
                    "Mutation %s failed (status=%s); snapshot restored",
                    descriptor.name,
                    result.status,
                )
                raise MutationFailed(descriptor.error_message)

            if descriptor.reconcile is not None:
                data = result.data
                self._patch(
                    affected,
                    lambda key, current: descriptor.reconcile(key, data, current),
                )
            if descriptor.invalidate:
                self.cache.invalidate(descriptor.invalidate)
            if descriptor.remove:
                self.cache.remove(descriptor.remove)
            logger.debug("Mutation %s committed", descriptor.name)
        finally:
            self._pending[descriptor.name] -= 1

        if descriptor.on_success is not None:
            outcome = descriptor.on_success(result.data)
            if asyncio.iscoroutine(outcome):
                await outcome
        return MutationResult(name=descriptor.name, data=result.data, status=result.status)


__all__ = [
    "MutationDescriptor",
    "MutationResult",
    "MutationRunner",
]
