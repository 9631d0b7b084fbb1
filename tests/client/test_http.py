from __future__ import annotations

import asyncio

import httpx
import pytest

from heyso.client.errors import ApiError, RequestAborted
from heyso.client.http import AbortSignal, ApiClient, ApiResult
from heyso.client.session import AuthSession
from heyso.client.storage import MemoryStorage
from tests.fakes import BASE_URL, FakeBackend, offline, request_json


def _client(backend: FakeBackend, token: str | None = None) -> ApiClient:
    session = AuthSession(MemoryStorage())
    if token:
        session.set_auth(token)
    return ApiClient(BASE_URL, session=session, transport=backend.transport)


async def test_adds_bearer_header_from_current_session(backend: FakeBackend) -> None:
    backend.route("GET", "/api/diary", {"diaries": []})

    async with _client(backend, token="t-1") as api:
        result = await api.get("/api/diary")
        api.session.clear_auth()
        await api.get("/api/diary")

    assert result == ApiResult(ok=True, status=200, data={"diaries": []})
    first, second = backend.calls("GET", "/api/diary")
    assert first.headers["Authorization"] == "Bearer t-1"
    assert "Authorization" not in second.headers


async def test_json_body_and_query_encoding(backend: FakeBackend) -> None:
    backend.route("POST", "/api/diary", 42)

    async with _client(backend) as api:
        result = await api.post(
            "/api/diary", {"title": "hi", "tags": ["a"]}, query={"page": 1, "skip": None}
        )

    assert result.data == 42
    (request,) = backend.calls("POST", "/api/diary")
    assert request.headers["Content-Type"] == "application/json"
    assert request_json(request) == {"title": "hi", "tags": ["a"]}
    assert dict(request.url.params) == {"page": "1"}


async def test_absolute_urls_pass_through(backend: FakeBackend) -> None:
    backend.route("GET", "/elsewhere", {"ok": 1})

    async with _client(backend) as api:
        result = await api.get("https://other.example/elsewhere")

    assert result.ok
    assert backend.requests[0].url.host == "other.example"


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (httpx.Response(200, content=b""), None),
        (httpx.Response(200, text="plain words"), "plain words"),
        (
            httpx.Response(
                200, content=b"{broken", headers={"Content-Type": "application/json"}
            ),
            None,
        ),
    ],
)
async def test_body_parsing_never_raises(
    backend: FakeBackend, response: httpx.Response, expected: object
) -> None:
    backend.route("GET", "/body", handler=lambda _request: response)

    async with _client(backend) as api:
        result = await api.get("/body")

    assert result.ok
    assert result.data == expected


async def test_non_2xx_is_a_result_not_an_exception(backend: FakeBackend) -> None:
    backend.route("GET", "/missing", {"message": "gone"}, status=404)

    async with _client(backend) as api:
        result = await api.get("/missing")

    assert result.ok is False
    assert result.status == 404
    assert result.data == {"message": "gone"}
    with pytest.raises(ApiError) as excinfo:
        result.expect("load failed")
    assert excinfo.value.status == 404


async def test_transport_failure_becomes_status_zero(backend: FakeBackend) -> None:
    backend.route("GET", "/api/diary", handler=offline)

    async with _client(backend) as api:
        result = await api.get("/api/diary")

    assert result == ApiResult(ok=False, status=0, data=None)
    with pytest.raises(ApiError) as excinfo:
        result.expect("load failed")
    assert excinfo.value.is_transport_failure


async def test_pre_aborted_signal_raises_without_request(backend: FakeBackend) -> None:
    signal = AbortSignal()
    signal.abort("gone")

    async with _client(backend) as api:
        with pytest.raises(RequestAborted):
            await api.get("/api/diary", signal=signal)

    assert backend.requests == []


async def test_abort_during_request_raises(backend: FakeBackend) -> None:
    started = asyncio.Event()

    async def slow(_request: httpx.Request) -> httpx.Response:
        started.set()
        await asyncio.sleep(5)
        return httpx.Response(200, json={})

    backend.route("GET", "/slow", handler=slow)
    signal = AbortSignal()

    async with _client(backend) as api:
        task = asyncio.create_task(api.get("/slow", signal=signal))
        await started.wait()
        signal.abort("superseded")
        with pytest.raises(RequestAborted):
            await task
