from __future__ import annotations

import pytest

from heyso.cache import keys as cache_keys
from heyso.cache.invalidation import (
    MUTATION_CONVERSATION_CREATED,
    MUTATION_CONVERSATION_DELETED,
    MUTATION_CONVERSATION_RENAMED,
    MUTATION_DIARY_CHANGED,
    MUTATION_DIARY_CREATED,
    MUTATION_DIARY_DELETED,
    MUTATION_MESSAGE_SENT,
    month_of,
    plan_for_chat_mutation,
    plan_for_diary_mutation,
    plan_for_session_cleared,
)
from heyso.cache.keys import QueryKey


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2025-06-15", "2025-06"),
        ("2025-06-15T10:00:00Z", "2025-06"),
        ("2025-6-1", None),
        ("", None),
        (None, None),
    ],
)
def test_month_of(value: str | None, expected: str | None) -> None:
    assert month_of(value) == expected


def test_create_invalidates_lists_tags_and_exact_month() -> None:
    plan = plan_for_diary_mutation(MUTATION_DIARY_CREATED, dates=("2025-06-15",))

    assert plan.invalidate == (
        cache_keys.namespace(cache_keys.DIARY_ENTRIES),
        cache_keys.namespace(cache_keys.DIARY_DAILY),
        cache_keys.monthly_counts("2025-06"),
        cache_keys.my_tags(),
    )
    assert plan.remove == ()


def test_edit_across_months_invalidates_both_months_and_detail() -> None:
    plan = plan_for_diary_mutation(
        MUTATION_DIARY_CHANGED, diary_id=4, dates=("2025-05-31", "2025-06-01", None)
    )

    assert cache_keys.monthly_counts("2025-05") in plan.invalidate
    assert cache_keys.monthly_counts("2025-06") in plan.invalidate
    assert cache_keys.diary_detail(4) in plan.invalidate


def test_unknown_dates_fall_back_to_month_prefix() -> None:
    plan = plan_for_diary_mutation(MUTATION_DIARY_DELETED, diary_id=4)

    assert cache_keys.namespace(cache_keys.MONTHLY_COUNTS) in plan.invalidate
    assert plan.remove == (cache_keys.diary_detail(4), cache_keys.diary_ai_comments(4))


def test_same_month_is_listed_once() -> None:
    plan = plan_for_diary_mutation(
        MUTATION_DIARY_CHANGED, diary_id=1, dates=("2025-06-01", "2025-06-30")
    )

    assert plan.invalidate.count(cache_keys.monthly_counts("2025-06")) == 1


def test_unknown_diary_mutation_is_rejected() -> None:
    with pytest.raises(ValueError):
        plan_for_diary_mutation("diary.archived")


def test_chat_plans() -> None:
    sent = plan_for_chat_mutation(MUTATION_MESSAGE_SENT, conversation_id=5)
    created = plan_for_chat_mutation(MUTATION_CONVERSATION_CREATED)
    renamed = plan_for_chat_mutation(MUTATION_CONVERSATION_RENAMED, conversation_id=5)
    deleted = plan_for_chat_mutation(MUTATION_CONVERSATION_DELETED, conversation_id=5)

    assert sent.invalidate == (cache_keys.ai_summary(5),)
    assert created.invalidate == (cache_keys.namespace(cache_keys.AI_CONVERSATIONS),)
    assert renamed.invalidate == () and renamed.remove == ()
    assert deleted.remove == (
        QueryKey.of(cache_keys.AI_CONVERSATION, 5),
        cache_keys.ai_summary(5),
    )


def test_session_cleared_removes_every_authenticated_namespace() -> None:
    plan = plan_for_session_cleared()

    assert {key.namespace for key in plan.remove} == set(
        cache_keys.AUTHENTICATED_NAMESPACES
    )
    assert all(key.params == () for key in plan.remove)
