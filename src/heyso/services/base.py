"""Shared plumbing for the query/mutation services."""

from __future__ import annotations

from logging import getLogger
from typing import Any, Mapping

from ulid import ULID

from heyso.cache.keys import QueryKey
from heyso.cache.mutations import MutationRunner
from heyso.cache.query_cache import Fetcher, QueryCache, QueryState
from heyso.client.http import ApiClient
from heyso.client.session import AuthSession
from heyso.util import coerce_int

logger = getLogger(__name__)


def local_id(prefix: str = "local") -> str:
    """Return a temporary client-side identifier such as ``local-01J...``."""

    return f"{prefix}-{ULID()}"


def is_local_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("local-")


def server_id(value: Any) -> Any:
    """Numeric form of a server id; non-numeric ids pass through unchanged."""

    number = coerce_int(value)
    return value if number is None else number


def payload_list(data: Any, field: str | None = None) -> list[Any]:
    """Pull a list out of ``data`` (or ``data[field]``), defaulting to ``[]``."""

    if field is not None:
        data = data.get(field) if isinstance(data, Mapping) else None
    return list(data) if isinstance(data, list) else []


class ServiceBase:
    """Give services access to the API, the session and the cache."""

    def __init__(
        self,
        api: ApiClient,
        session: AuthSession,
        cache: QueryCache,
        runner: MutationRunner,
    ) -> None:
        self.api = api
        self.session = session
        self.cache = cache
        self.runner = runner

    @property
    def is_signed_in(self) -> bool:
        return self.session.get_session().is_authenticated

    async def _query(
        self, key: QueryKey, fetcher: Fetcher, *, require_auth: bool = True
    ) -> QueryState:
        if require_auth and not self.is_signed_in:
            logger.debug("Query %s skipped: not signed in", key)
            return QueryState(key=key, is_disabled=True)
        return await self.cache.fetch(key, fetcher)

    def _cached_keys(self, namespace: str) -> tuple[QueryKey, ...]:
        return tuple(key for key in self.cache.keys() if key.namespace == namespace)


__all__ = ["ServiceBase", "is_local_id", "local_id", "payload_list", "server_id"]
