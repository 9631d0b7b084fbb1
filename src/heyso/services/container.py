"""Service wiring and client lifecycle helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from heyso.cache import keys as cache_keys
from heyso.cache.invalidation import plan_for_session_cleared
from heyso.cache.mutations import MutationRunner
from heyso.cache.query_cache import QueryCache
from heyso.client.http import ApiClient
from heyso.client.session import AuthSession, Session
from heyso.client.storage import JsonFileStorage, KeyValueStorage
from heyso.services.ai_comments import AiCommentService
from heyso.services.aichat import AiChatService
from heyso.services.calendar import CalendarService
from heyso.services.conversation_ui import ConversationUi
from heyso.services.diary import DiaryService
from heyso.services.nudge import NudgeService
from heyso.settings import settings
from heyso.util import expand_path, str_to_bool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeysoServices:
    """Bundle the long-lived client objects sharing one session and cache."""

    storage: KeyValueStorage
    session: AuthSession
    api: ApiClient
    cache: QueryCache
    runner: MutationRunner
    diary: DiaryService
    calendar: CalendarService
    aichat: AiChatService
    ai_comments: AiCommentService
    nudge: NudgeService
    conversation_ui: ConversationUi

    @classmethod
    def create(
        cls,
        *,
        storage: KeyValueStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str | None = None,
    ) -> "HeysoServices":
        if storage is None:
            storage = JsonFileStorage(expand_path(settings.STORAGE.path))
        session = AuthSession(storage)
        api = ApiClient(
            base_url or settings.API.base_url,
            session=session,
            timeout=settings.get("API.timeout"),
            transport=transport,
        )
        cache = QueryCache(maxsize=int(settings.CACHE.maxsize))
        runner = MutationRunner(cache)
        shared = (api, session, cache, runner)

        diary = DiaryService(
            *shared,
            page_size=int(settings.DIARY.page_size),
            max_page_size=int(settings.DIARY.max_page_size),
        )
        aichat = AiChatService(
            *shared,
            page_size=int(settings.AICHAT.page_size),
            message_limit=int(settings.AICHAT.message_limit),
            new_chat_title=str(settings.AICHAT.new_chat_title),
        )
        services = cls(
            storage=storage,
            session=session,
            api=api,
            cache=cache,
            runner=runner,
            diary=diary,
            calendar=CalendarService(diary),
            aichat=aichat,
            ai_comments=AiCommentService(
                *shared, limit=int(settings.AI_COMMENTS.limit)
            ),
            nudge=NudgeService(
                *shared,
                storage=storage,
                enabled=str_to_bool(settings.NUDGE.enabled),
                default_messages=list(settings.NUDGE.default_messages or []),
            ),
            conversation_ui=ConversationUi(),
        )
        services._wire_session()
        return services

    def _wire_session(self) -> None:
        self.session.cleared.connect(self._on_session_cleared, sender=self.session, weak=False)
        self.session.changed.connect(self._on_session_changed, sender=self.session, weak=False)

    def _on_session_cleared(self, _sender: Any, reason: str = "", **_: Any) -> None:
        plan = plan_for_session_cleared()
        removed = self.cache.remove(plan.remove)
        self.cache.disable(*cache_keys.AUTHENTICATED_NAMESPACES)
        self.aichat.select(None)
        self.aichat.error_message = ""
        self.conversation_ui.reset()
        logger.debug("Session cleared (%s); purged %d cache key(s)", reason, len(removed))

    def _on_session_changed(self, _sender: Any, session: Session, **_: Any) -> None:
        if session.is_authenticated:
            self.cache.enable(*cache_keys.AUTHENTICATED_NAMESPACES)

    async def bootstrap(self) -> Session:
        """Validate any persisted token once before the first authenticated read."""

        return await self.session.validate_auth(self.api)

    async def aclose(self) -> None:
        self.cache.clear()
        await self.api.aclose()

    async def __aenter__(self) -> "HeysoServices":
        await self.bootstrap()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def create_services(**kwargs: Any) -> HeysoServices:
    return HeysoServices.create(**kwargs)


__all__ = ["HeysoServices", "create_services"]
