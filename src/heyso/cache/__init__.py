"""Client-side query cache, mutation runner and invalidation rules."""

from heyso.cache.mutations import MutationDescriptor, MutationResult, MutationRunner
from heyso.cache.query_cache import QueryCache, QueryState

__all__ = [
    "MutationDescriptor",
    "MutationResult",
    "MutationRunner",
    "QueryCache",
    "QueryState",
]
