"""Authenticated request wrapper around :mod:`httpx`.

Every call resolves to an :class:`ApiResult` no matter how the transport
behaved. The single exception is an explicit abort through an
:class:`AbortSignal`, which raises :class:`RequestAborted` so callers can tell
"I discarded this request" apart from "this request failed".
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Mapping, TypeVar

import httpx
import orjson

from heyso.client.errors import ApiError, RequestAborted

if TYPE_CHECKING:
    from heyso.client.session import AuthSession

T = TypeVar("T")


class AbortSignal:
    """One-shot cancellation flag shared between a caller and its request."""

    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise RequestAborted(self.reason or "aborted")


@dataclass(frozen=True, slots=True)
class ApiResult:
    ok: bool
    status: int
    data: Any = None

    def expect(self, message: str) -> Any:
        """Return ``data`` for a 2xx result, raise :class:`ApiError` otherwise."""

        if not self.ok:
            raise ApiError(message, status=self.status, data=self.data)
        return self.data


class ApiClient:
    """Issue requests against the Heyso backend with the session's bearer token."""

    def __init__(
        self,
        base_url: str,
        *,
        session: "AuthSession | None" = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport or httpx.AsyncHTTPTransport(retries=0),
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        token = self.session.token if self.session is not None else None
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _encode_body(
        body: Any, headers: dict[str, str]
    ) -> bytes | str | None:
        if body is None:
            return None
        if isinstance(body, (bytes, bytearray, str)):
            return bytes(body) if isinstance(body, bytearray) else body
        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = "application/json"
        return orjson.dumps(body)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        raw = response.content
        if not raw or not raw.strip():
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            content_type = response.headers.get("content-type", "").lower()
            if "json" in content_type:
                return None
            return response.text

    async def _race(self, awaitable: Awaitable[T], signal: AbortSignal) -> T:
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        with suppress(asyncio.CancelledError, httpx.HTTPError):
            await task
        raise RequestAborted(signal.reason or "aborted")

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        query: Mapping[str, Any] | None = None,
        signal: AbortSignal | None = None,
    ) -> ApiResult:
        if signal is not None:
            signal.raise_if_aborted()

        url = self.resolve_url(path)
        merged_headers = {**(headers or {}), **self._auth_headers()}
        content = self._encode_body(body, merged_headers)
        params = {
            key: value for key, value in (query or {}).items() if value is not None
        }
        method = method.upper()

        send = self._client.request(
            method,
            url,
            headers=merged_headers,
            content=content,
            params=params or None,
        )
        try:
            if signal is None:
                response = await send
            else:
                response = await self._race(send, signal)
        except RequestAborted:
            self.logger.debug("%s %s aborted", method, url)
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.logger.warning("%s %s failed: %s", method, url, exc)
            return ApiResult(ok=False, status=0, data=None)

        status = response.status_code
        self.logger.debug("%s %s -> %s", method, url, status)
        return ApiResult(
            ok=200 <= status < 300,
            status=status,
            data=self._parse_body(response),
        )

    async def get(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        signal: AbortSignal | None = None,
    ) -> ApiResult:
        return await self.request(path, method="GET", query=query, signal=signal)

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        query: Mapping[str, Any] | None = None,
        signal: AbortSignal | None = None,
    ) -> ApiResult:
        return await self.request(
            path, method="POST", body=body, query=query, signal=signal
        )


__all__ = ["AbortSignal", "ApiClient", "ApiResult"]
