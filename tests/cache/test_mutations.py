from __future__ import annotations

import asyncio
from typing import Any

import pytest

from heyso.cache import keys as cache_keys
from heyso.cache.keys import QueryKey
from heyso.cache.mutations import MutationDescriptor, MutationRunner
from heyso.cache.query_cache import QueryCache
from heyso.client.errors import MutationFailed, RequestAborted
from heyso.client.http import AbortSignal, ApiResult

LIST_KEY = cache_keys.diary_entries(1, 20)
DETAIL_KEY = cache_keys.diary_detail(1)
MONTH_KEY = cache_keys.monthly_counts("2025-06")


def _server(result: ApiResult | Exception):
    async def call(_signal: AbortSignal) -> ApiResult:
        if isinstance(result, Exception):
            raise result
        return result

    return call


def _seeded_cache() -> QueryCache:
    cache = QueryCache()
    cache.set_data(LIST_KEY, [{"diaryId": 1, "title": "old"}])
    cache.set_data(DETAIL_KEY, {"diaryId": 1, "title": "old", "tags": ["a"]})
    cache.set_data(MONTH_KEY, [{"diaryDate": "2025-06-01", "diaryCount": 1}])
    return cache


def _rename(key: QueryKey, current: Any) -> Any:
    if key == DETAIL_KEY:
        return {**current, "title": "new"}
    return [{**item, "title": "new"} for item in current]


def _descriptor(result: ApiResult | Exception, **overrides: Any) -> MutationDescriptor:
    options: dict[str, Any] = {
        "name": "diary.changed",
        "server_call": _server(result),
        "affected_keys": (LIST_KEY, DETAIL_KEY, cache_keys.diary_detail(99)),
        "apply": _rename,
        "invalidate": (MONTH_KEY,),
        "error_message": "일기를 저장하지 못했습니다.",
    }
    options.update(overrides)
    return MutationDescriptor(**options)


async def test_success_keeps_patch_and_invalidates_derived_keys() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)

    result = await runner.run(_descriptor(ApiResult(True, 200, {"diaryId": 1})))

    assert result.status == 200
    assert cache.get_data(LIST_KEY) == [{"diaryId": 1, "title": "new"}]
    assert cache.get_data(DETAIL_KEY)["title"] == "new"
    assert cache.is_invalidated(MONTH_KEY)
    assert cache.get_data(MONTH_KEY) == [{"diaryDate": "2025-06-01", "diaryCount": 1}]
    assert cache_keys.diary_detail(99) not in cache.keys()


@pytest.mark.parametrize(
    "outcome",
    [
        ApiResult(False, 500, {"message": "nope"}),
        ApiResult(False, 0, None),
        RuntimeError("broken server call"),
    ],
)
async def test_failure_restores_exact_snapshot(outcome: ApiResult | Exception) -> None:
    cache = _seeded_cache()
    before = {key: cache.get_data(key) for key in cache.keys()}
    runner = MutationRunner(cache)

    with pytest.raises(MutationFailed) as excinfo:
        await runner.run(_descriptor(outcome))

    assert excinfo.value.user_message == "일기를 저장하지 못했습니다."
    assert {key: cache.get_data(key) for key in cache.keys()} == before
    assert not cache.is_invalidated(MONTH_KEY)
    assert cache_keys.diary_detail(99) not in cache.keys()


async def test_abort_restores_and_reraises() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)

    with pytest.raises(RequestAborted):
        await runner.run(_descriptor(RequestAborted("navigated away")))

    assert cache.get_data(LIST_KEY) == [{"diaryId": 1, "title": "old"}]


async def test_mutation_cancels_in_flight_reads_of_affected_keys() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)
    release = asyncio.Event()

    async def slow_read(_signal: AbortSignal) -> list[dict[str, Any]]:
        await release.wait()
        return [{"diaryId": 1, "title": "stale server copy"}]

    read = asyncio.create_task(cache.fetch(LIST_KEY, slow_read))
    await asyncio.sleep(0)
    await runner.run(_descriptor(ApiResult(True, 200, None)))
    release.set()
    await read

    assert cache.get_data(LIST_KEY) == [{"diaryId": 1, "title": "new"}]


async def test_reconcile_is_applied_after_success() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)

    def reconcile(key: QueryKey, data: Any, current: Any) -> Any:
        if key == DETAIL_KEY:
            return {**current, **data}
        return current

    await runner.run(
        _descriptor(
            ApiResult(True, 200, {"title": "server title"}),
            reconcile=reconcile,
        )
    )

    assert cache.get_data(DETAIL_KEY)["title"] == "server title"


async def test_seed_missing_creates_and_rolls_back_absent_keys() -> None:
    cache = QueryCache()
    runner = MutationRunner(cache)
    key = cache_keys.ai_conversation(5, 100)

    def seed(_key: QueryKey, current: Any) -> Any:
        return {"messages": [*((current or {}).get("messages") or []), "hi"]}

    with pytest.raises(MutationFailed):
        await runner.run(
            MutationDescriptor(
                name="chat.message.sent",
                server_call=_server(ApiResult(False, 0, None)),
                affected_keys=(key,),
                apply=seed,
                seed_missing=True,
            )
        )

    assert key not in cache.keys()


async def test_on_success_hook_receives_response_data() -> None:
    cache = QueryCache()
    runner = MutationRunner(cache)
    received: list[Any] = []

    async def hook(data: Any) -> None:
        received.append(data)

    await runner.run(
        MutationDescriptor(
            name="diary.ai_comment.created",
            server_call=_server(ApiResult(True, 200, {"aiCommentId": 3})),
            on_success=hook,
        )
    )

    assert received == [{"aiCommentId": 3}]
    assert not runner.is_pending("diary.ai_comment.created")


def _append(item: Any):
    def apply(_key: QueryKey, current: Any) -> Any:
        return [*(current or []), item]

    return apply


def _slow_failure(release: asyncio.Event):
    async def call(_signal: AbortSignal) -> ApiResult:
        await release.wait()
        return ApiResult(False, 500, None)

    return call


async def test_failure_after_overlapping_success_strips_only_its_own_patch() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)
    release = asyncio.Event()

    def drop_pending(_key: QueryKey, current: Any) -> Any:
        return [item for item in current if item != {"diaryId": "local-b"}]

    failing = asyncio.create_task(
        runner.run(
            MutationDescriptor(
                name="diary.created",
                server_call=_slow_failure(release),
                affected_keys=(LIST_KEY,),
                apply=_append({"diaryId": "local-b"}),
                rollback=drop_pending,
            )
        )
    )
    await asyncio.sleep(0)
    await runner.run(
        MutationDescriptor(
            name="diary.created",
            server_call=_server(ApiResult(True, 200, None)),
            affected_keys=(LIST_KEY,),
            apply=_append({"diaryId": 2, "title": "kept"}),
        )
    )
    release.set()

    with pytest.raises(MutationFailed):
        await failing

    assert cache.get_data(LIST_KEY) == [
        {"diaryId": 1, "title": "old"},
        {"diaryId": 2, "title": "kept"},
    ]
    assert not cache.is_invalidated(LIST_KEY)


async def test_failure_after_overlapping_write_without_rollback_invalidates() -> None:
    cache = _seeded_cache()
    runner = MutationRunner(cache)
    release = asyncio.Event()

    failing = asyncio.create_task(
        runner.run(
            MutationDescriptor(
                name="diary.changed",
                server_call=_slow_failure(release),
                affected_keys=(LIST_KEY, DETAIL_KEY),
                apply=_rename,
            )
        )
    )
    await asyncio.sleep(0)
    cache.set_data(LIST_KEY, [{"diaryId": 1, "title": "from server"}])
    release.set()

    with pytest.raises(MutationFailed):
        await failing

    assert cache.get_data(LIST_KEY) == [{"diaryId": 1, "title": "from server"}]
    assert cache.is_invalidated(LIST_KEY)
    assert cache.get_data(DETAIL_KEY)["title"] == "old"
    assert not cache.is_invalidated(DETAIL_KEY)


async def test_mutation_leaves_unrelated_keys_alone() -> None:
    cache = _seeded_cache()
    other = cache_keys.ai_conversation(6, 100)
    cache.set_data(other, {"conversationId": 6, "messages": []})
    before = cache.get_data(other)
    version = cache.version(other)
    runner = MutationRunner(cache)

    await runner.run(_descriptor(ApiResult(True, 200, None)))

    assert cache.get_data(other) == before
    assert cache.version(other) == version
    assert not cache.is_invalidated(other)
