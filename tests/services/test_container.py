from __future__ import annotations

import asyncio
from typing import Any

import httpx

from heyso.cache import keys as cache_keys
from heyso.client.session import AUTH_STORAGE_KEY
from heyso.client.storage import MemoryStorage
from heyso.services.container import HeysoServices
from tests.fakes import BASE_URL, TOKEN, FakeBackend, json_response

ENTRIES_KEY = cache_keys.diary_entries(1, 20)


def _create(backend: FakeBackend, storage: MemoryStorage) -> HeysoServices:
    return HeysoServices.create(
        storage=storage, transport=backend.transport, base_url=BASE_URL
    )


async def test_rejected_stored_token_purges_and_disables(backend: FakeBackend) -> None:
    storage = MemoryStorage({AUTH_STORAGE_KEY: {"accessToken": "stale"}})
    backend.route("POST", "/api/auth/validate", {"message": "expired"}, status=401)
    backend.route("GET", "/api/diary", {"diaries": []})

    services = _create(backend, storage)
    services.cache.set_data(ENTRIES_KEY, [{"diaryId": 1}])
    services.aichat.select(3)
    services.aichat.error_message = "stale banner"
    services.conversation_ui.open_delete(3)

    async with services:
        session = services.session.get_session()
        assert session.token is None
        assert session.validated is True
        assert storage.get(AUTH_STORAGE_KEY) is None

        assert ENTRIES_KEY not in services.cache.keys()
        assert services.cache.is_disabled(ENTRIES_KEY)
        assert services.aichat.active_conversation_id is None
        assert services.aichat.error_message == ""
        assert services.conversation_ui.state.target_id is None

        state = await services.diary.entries()
        assert state.is_disabled
        assert backend.calls("GET", "/api/diary") == []
        assert len(backend.calls("POST", "/api/auth/validate")) == 1


async def test_session_clear_removes_cached_diary_data(
    signed_in: HeysoServices, backend: FakeBackend
) -> None:
    backend.route("GET", "/api/diary", {"diaries": [{"diaryId": 1}]})
    await signed_in.diary.entries()

    signed_in.session.clear_auth()

    assert signed_in.cache.keys() == []
    assert signed_in.session.get_session().token is None


async def test_login_reenables_authenticated_queries(
    services: HeysoServices, backend: FakeBackend
) -> None:
    services.session.clear_auth()
    backend.route("GET", "/api/diary", {"diaries": []})

    services.session.set_auth(TOKEN, userId=1)
    state = await services.diary.entries()

    assert not state.is_disabled
    (request,) = backend.calls("GET", "/api/diary")
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"


async def test_only_latest_detail_read_commits(
    signed_in: HeysoServices, backend: FakeBackend
) -> None:
    release_first = asyncio.Event()
    responses: list[dict[str, Any]] = [
        {"diaryId": 5, "title": "first response"},
        {"diaryId": 5, "title": "second response"},
    ]
    calls = 0

    async def respond(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        index = calls
        calls += 1
        if index == 0:
            await release_first.wait()
        return json_response(responses[index])

    backend.route("GET", "/api/diary/5", handler=respond)

    first = asyncio.create_task(signed_in.diary.detail(5))
    await asyncio.sleep(0.01)
    second = await signed_in.diary.detail(5)
    release_first.set()
    await first

    assert second.data["title"] == "second response"
    assert signed_in.cache.get_data(cache_keys.diary_detail(5))["title"] == "second response"


async def test_valid_stored_token_enables_queries(backend: FakeBackend) -> None:
    storage = MemoryStorage({AUTH_STORAGE_KEY: {"accessToken": TOKEN, "userId": 1}})
    backend.route("POST", "/api/auth/validate", {"valid": True})

    async with _create(backend, storage) as services:
        assert services.session.get_session().is_authenticated
        assert services.nudge.is_signed_in
