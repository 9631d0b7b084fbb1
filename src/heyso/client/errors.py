"""Exceptions raised by the Heyso client layers."""

from __future__ import annotations

from typing import Any


class HeysoError(Exception):
    """Base class for every error raised by the client."""


class RequestAborted(HeysoError):
    """Raised when a caller-supplied abort signal cancels a request.

    Aborts are expected (a newer read superseded an older one) and must never
    be surfaced as user-visible errors.
    """


class ApiError(HeysoError):
    """A request finished without a 2xx status.

    ``status`` is ``0`` when the request never reached the server.
    """

    def __init__(self, message: str, *, status: int, data: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data

    @property
    def is_transport_failure(self) -> bool:
        return self.status == 0


class ValidationError(HeysoError, ValueError):
    """Input was rejected before any request was issued."""


class MutationFailed(HeysoError):
    """A mutation failed and its optimistic patch was rolled back."""

    def __init__(self, user_message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.cause = cause


class AuthenticationError(HeysoError):
    """The backend refused to issue a session token."""


__all__ = [
    "ApiError",
    "AuthenticationError",
    "HeysoError",
    "MutationFailed",
    "RequestAborted",
    "ValidationError",
]
