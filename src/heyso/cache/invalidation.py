"""Which cache keys a mutation invalidates.

Keys holding server-side aggregates (monthly counts, day buckets, tag lists,
summaries) cannot be predicted from an optimistic patch, so mutations
invalidate them instead of patching. This module is pure policy: it turns a
mutation kind plus its parameters into an :class:`InvalidationPlan`; the
mutation runner applies the plan.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from heyso.cache import keys as cache_keys
from heyso.cache.keys import QueryKey

MUTATION_DIARY_CREATED = "diary.created"
MUTATION_DIARY_CHANGED = "diary.changed"
MUTATION_DIARY_DELETED = "diary.deleted"
MUTATION_AI_COMMENT_CREATED = "diary.ai_comment.created"
MUTATION_MESSAGE_SENT = "chat.message.sent"
MUTATION_CONVERSATION_CREATED = "chat.conversation.created"
MUTATION_CONVERSATION_RENAMED = "chat.conversation.renamed"
MUTATION_CONVERSATION_UPDATED = "chat.conversation.updated"
MUTATION_CONVERSATION_DELETED = "chat.conversation.deleted"
MUTATION_SESSION_CLEARED = "session.cleared"


@dataclass(frozen=True, slots=True)
class DiaryLineageSpec:
    include_entries: bool
    include_daily: bool
    include_months: bool
    include_tags: bool
    invalidate_detail: bool
    remove_detail: bool


DIARY_LINEAGE: dict[str, DiaryLineageSpec] = {
    MUTATION_DIARY_CREATED: DiaryLineageSpec(
        include_entries=True,
        include_daily=True,
        include_months=True,
        include_tags=True,
        invalidate_detail=False,
        remove_detail=False,
    ),
    MUTATION_DIARY_CHANGED: DiaryLineageSpec(
        include_entries=True,
        include_daily=True,
        include_months=True,
        include_tags=True,
        invalidate_detail=True,
        remove_detail=False,
    ),
    MUTATION_DIARY_DELETED: DiaryLineageSpec(
        include_entries=True,
        include_daily=True,
        include_months=True,
        include_tags=True,
        invalidate_detail=False,
        remove_detail=True,
    ),
}


@dataclass(frozen=True, slots=True)
class InvalidationPlan:
    mutation: str
    invalidate: tuple[QueryKey, ...] = ()
    remove: tuple[QueryKey, ...] = ()


def _dedupe(items: Iterable[QueryKey]) -> tuple[QueryKey, ...]:
    seen: set[QueryKey] = set()
    deduped: list[QueryKey] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)
    return tuple(deduped)


def month_of(date_key: str | None) -> str | None:
    """Return ``YYYY-MM`` for a ``YYYY-MM-DD`` (or longer ISO) string."""

    value = str(date_key or "").strip()
    if len(value) < 7 or value[4] != "-":
        return None
    month = value[:7]
    year, _, mm = month.partition("-")
    if not (year.isdigit() and mm.isdigit()):
        return None
    return month


def plan_for_diary_mutation(
    mutation: str,
    *,
    diary_id: int | str | None = None,
    dates: Sequence[str | None] = (),
) -> InvalidationPlan:
    """Plan for a diary create/change/delete touching entries dated ``dates``."""

    spec = DIARY_LINEAGE.get(mutation)
    if spec is None:
        raise ValueError(f"Unknown diary mutation: {mutation}")

    invalidate: list[QueryKey] = []
    remove: list[QueryKey] = []

    if spec.include_entries:
        invalidate.append(cache_keys.namespace(cache_keys.DIARY_ENTRIES))
    if spec.include_daily:
        invalidate.append(cache_keys.namespace(cache_keys.DIARY_DAILY))
    if spec.include_months:
        months = [month for month in (month_of(d) for d in dates) if month]
        if months:
            invalidate.extend(cache_keys.monthly_counts(month) for month in months)
        else:
            invalidate.append(cache_keys.namespace(cache_keys.MONTHLY_COUNTS))
    if spec.include_tags:
        invalidate.append(cache_keys.my_tags())
    if diary_id is not None:
        if spec.invalidate_detail:
            invalidate.append(cache_keys.diary_detail(diary_id))
        if spec.remove_detail:
            remove.append(cache_keys.diary_detail(diary_id))
            remove.append(cache_keys.diary_ai_comments(diary_id))

    return InvalidationPlan(
        mutation=mutation,
        invalidate=_dedupe(invalidate),
        remove=_dedupe(remove),
    )


def plan_for_chat_mutation(
    mutation: str, *, conversation_id: int | str | None = None
) -> InvalidationPlan:
    if mutation == MUTATION_MESSAGE_SENT:
        if conversation_id is None:
            return InvalidationPlan(mutation=mutation)
        return InvalidationPlan(
            mutation=mutation,
            invalidate=(cache_keys.ai_summary(conversation_id),),
        )
    if mutation == MUTATION_CONVERSATION_CREATED:
        return InvalidationPlan(
            mutation=mutation,
            invalidate=(cache_keys.namespace(cache_keys.AI_CONVERSATIONS),),
        )
    if mutation in {MUTATION_CONVERSATION_RENAMED, MUTATION_CONVERSATION_UPDATED}:
        # Renames and settings updates are fully described by the optimistic patch.
        return InvalidationPlan(mutation=mutation)
    if mutation == MUTATION_CONVERSATION_DELETED:
        if conversation_id is None:
            return InvalidationPlan(mutation=mutation)
        return InvalidationPlan(
            mutation=mutation,
            remove=(
                QueryKey.of(cache_keys.AI_CONVERSATION, conversation_id),
                cache_keys.ai_summary(conversation_id),
            ),
        )
    raise ValueError(f"Unknown chat mutation: {mutation}")


def plan_for_session_cleared() -> InvalidationPlan:
    return InvalidationPlan(
        mutation=MUTATION_SESSION_CLEARED,
        remove=tuple(
            cache_keys.namespace(name) for name in cache_keys.AUTHENTICATED_NAMESPACES
        ),
    )


__all__ = [
    "DIARY_LINEAGE",
    "InvalidationPlan",
    "MUTATION_AI_COMMENT_CREATED",
    "MUTATION_CONVERSATION_CREATED",
    "MUTATION_CONVERSATION_DELETED",
    "MUTATION_CONVERSATION_RENAMED",
    "MUTATION_CONVERSATION_UPDATED",
    "MUTATION_DIARY_CHANGED",
    "MUTATION_DIARY_CREATED",
    "MUTATION_DIARY_DELETED",
    "MUTATION_MESSAGE_SENT",
    "MUTATION_SESSION_CLEARED",
    "month_of",
    "plan_for_chat_mutation",
    "plan_for_diary_mutation",
    "plan_for_session_cleared",
]
