"""Once-a-day reminder to write a diary entry."""

from __future__ import annotations

import random
from datetime import date
from logging import getLogger
from typing import Any, Mapping, Sequence

from heyso.cache import keys as cache_keys
from heyso.client.http import AbortSignal
from heyso.client.storage import KeyValueStorage
from heyso.services.base import ServiceBase
from heyso.services.validators import parse_iso_date

logger = getLogger(__name__)

LAST_SHOWN_KEY = "diaryToast:lastShownDate"
DISMISSED_KEY = "diaryToast:dismissedDate"
NUDGE_PATH = "/api/diary/diary-nudge/today"

DEFAULT_MESSAGES = ("특별했던 오늘의 순간들을 남겨볼까요?",)


def _day_key(today: str | date | None) -> str:
    return parse_iso_date(today if today is not None else date.today())


class NudgeService(ServiceBase):
    def __init__(
        self,
        *args: Any,
        storage: KeyValueStorage,
        enabled: bool = True,
        default_messages: Sequence[str] = DEFAULT_MESSAGES,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.storage = storage
        self.enabled = enabled
        self.default_messages = tuple(m for m in default_messages if m) or DEFAULT_MESSAGES

    def fallback_message(self) -> str:
        return random.choice(self.default_messages)

    async def message(self, today: str | date | None = None) -> str:
        """Today's nudge text from the server, or a default message on any failure."""

        day = _day_key(today)

        async def fetcher(signal: AbortSignal) -> str | None:
            result = await self.api.post(NUDGE_PATH, signal=signal)
            if not result.ok:
                logger.debug("Nudge request failed (status=%s)", result.status)
                return None
            data = result.data
            text = data.get("messageText") if isinstance(data, Mapping) else None
            if isinstance(text, str) and text.strip():
                return text.strip()
            return None

        state = await self._query(cache_keys.diary_nudge(day), fetcher)
        return state.data or self.fallback_message()

    def should_show(self, today: str | date | None = None) -> bool:
        if not self.enabled or not self.is_signed_in:
            return False
        day = _day_key(today)
        if self.storage.get(DISMISSED_KEY) == day:
            return False
        if self.storage.get(LAST_SHOWN_KEY) == day:
            return False
        return True

    def mark_shown(self, today: str | date | None = None) -> None:
        self.storage.set(LAST_SHOWN_KEY, _day_key(today))

    def dismiss_today(self, today: str | date | None = None) -> None:
        self.storage.set(DISMISSED_KEY, _day_key(today))


__all__ = ["DEFAULT_MESSAGES", "DISMISSED_KEY", "LAST_SHOWN_KEY", "NudgeService"]
