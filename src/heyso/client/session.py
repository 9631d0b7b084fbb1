"""Auth session holder.

The session is the only process-wide mutable resource the client has: the
bearer token read by every outbound request. It is written exclusively by
:meth:`AuthSession.set_auth`, :meth:`AuthSession.clear_auth` and
:meth:`AuthSession.validate_auth`.

State machine::

    UNVALIDATED --validate ok--------------> VALIDATED_AUTHENTICATED
    UNVALIDATED --validate 401/error-------> VALIDATED_ANONYMOUS
    VALIDATED_AUTHENTICATED --clear_auth---> VALIDATED_ANONYMOUS
    VALIDATED_ANONYMOUS --set_auth---------> VALIDATED_AUTHENTICATED

Validation fails closed: anything but a 2xx answer drops the stored token.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from blinker import Signal

from heyso.client.errors import AuthenticationError
from heyso.client.storage import KeyValueStorage

if TYPE_CHECKING:
    from heyso.client.http import ApiClient

logger = getLogger(__name__)

AUTH_STORAGE_KEY = "auth"
VALIDATE_PATH = "/api/auth/validate"
GOOGLE_OAUTH_PATH = "/api/auth/oauth/google"

PROFILE_FIELDS = ("userId", "email", "nickname", "role")

_EMPTY_PROFILE: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Session:
    token: str | None
    validated: bool
    profile: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_PROFILE)

    @property
    def is_authenticated(self) -> bool:
        return self.validated and bool(self.token)


def _token_from_payload(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    for key in ("accessToken", "jwtAccessToken"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _profile_from_payload(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        return _EMPTY_PROFILE
    return MappingProxyType(
        {key: payload[key] for key in PROFILE_FIELDS if payload.get(key) is not None}
    )


class AuthSession:
    """Hold the current session and persist it under the ``auth`` key."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self.changed = Signal("session.changed")
        self.cleared = Signal("session.cleared")
        self._validation_attempted = False

        persisted = self._read_persisted()
        self._session = Session(
            token=_token_from_payload(persisted),
            validated=False,
            profile=_profile_from_payload(persisted),
        )

    def _read_persisted(self) -> Any:
        try:
            return self._storage.get(AUTH_STORAGE_KEY)
        except Exception:
            logger.warning("Unable to read persisted session", exc_info=True)
            return None

    @property
    def token(self) -> str | None:
        return self._session.token

    @property
    def validation_attempted(self) -> bool:
        return self._validation_attempted

    def get_session(self) -> Session:
        return self._session

    def _replace(self, session: Session) -> Session:
        previous = self._session
        self._session = session
        if session != previous:
            self.changed.send(self, session=session, previous=previous)
        return session

    def set_auth(self, token: str, **profile_fields: Any) -> Session:
        """Persist ``token`` and mark the session validated and authenticated."""

        token = str(token or "").strip()
        if not token:
            raise AuthenticationError("Cannot store an empty access token")

        payload = {"accessToken": token}
        payload.update(
            {key: value for key, value in profile_fields.items() if value is not None}
        )
        self._storage.set(AUTH_STORAGE_KEY, payload)
        logger.info("Session stored for user %s", payload.get("userId", "?"))
        return self._replace(
            Session(
                token=token,
                validated=True,
                profile=MappingProxyType(
                    {k: v for k, v in payload.items() if k != "accessToken"}
                ),
            )
        )

    def clear_auth(self, *, reason: str = "logout") -> Session:
        """Forget the token and tell dependent caches to purge themselves."""

        try:
            self._storage.remove(AUTH_STORAGE_KEY)
        except Exception:
            logger.warning("Unable to remove persisted session", exc_info=True)
        had_token = bool(self._session.token)
        session = self._replace(Session(token=None, validated=True))
        logger.info("Session cleared (reason=%s, had_token=%s)", reason, had_token)
        self.cleared.send(self, reason=reason)
        return session

    logout = clear_auth

    async def validate_auth(self, api: "ApiClient", *, force: bool = False) -> Session:
        """Confirm the stored token with the server, at most once unless forced."""

        if self._validation_attempted and not force:
            return self._session
        self._validation_attempted = True

        if not self._session.token:
            return self._replace(replace(self._session, token=None, validated=True))

        try:
            result = await api.post(VALIDATE_PATH)
        except Exception:
            logger.warning("Session validation errored; clearing token", exc_info=True)
            return self.clear_auth(reason="validation-error")

        if result.ok:
            logger.debug("Session validated (status=%s)", result.status)
            return self._replace(replace(self._session, validated=True))
        if result.status == 401:
            logger.info("Stored token rejected by server")
            return self.clear_auth(reason="unauthorized")

        logger.warning(
            "Session validation inconclusive (status=%s); clearing token",
            result.status,
        )
        return self.clear_auth(reason="validation-failed")

    async def login_with_google(self, api: "ApiClient", id_token: str) -> Session:
        """Exchange a Google ID token for a Heyso access token."""

        id_token = str(id_token or "").strip()
        if not id_token:
            raise AuthenticationError("Missing Google ID token")

        result = await api.post(GOOGLE_OAUTH_PATH, {"idToken": id_token})
        token = _token_from_payload(result.data) if result.ok else None
        if not token:
            raise AuthenticationError(
                f"Google sign-in failed (status={result.status})"
            )
        self._validation_attempted = True
        profile = dict(_profile_from_payload(result.data))
        return self.set_auth(token, **profile)


__all__ = ["AUTH_STORAGE_KEY", "AuthSession", "Session"]
