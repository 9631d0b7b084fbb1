from __future__ import annotations

from datetime import datetime, timezone
from logging import getLogger
from typing import Any, Mapping

from heyso.cache import keys as cache_keys
from heyso.cache.invalidation import MUTATION_AI_COMMENT_CREATED
from heyso.cache.mutations import MutationDescriptor
from heyso.cache.query_cache import QueryState
from heyso.client.errors import MutationFailed
from heyso.client.http import AbortSignal
from heyso.services.base import ServiceBase, payload_list, server_id

logger = getLogger(__name__)

COMMENT_ERROR_MESSAGE = "AI 댓글을 불러오지 못했습니다. 잠시 후 다시 시도해주세요."

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _created_at(comment: Mapping[str, Any]) -> datetime:
    raw = str(comment.get("createdAt") or "").strip()
    if not raw:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def latest_comment(comments: Any) -> Mapping[str, Any] | None:
    """Newest comment by ``createdAt``, or None when it has no content."""

    candidates = [item for item in comments or () if isinstance(item, Mapping)]
    if not candidates:
        return None
    latest = max(candidates, key=_created_at)
    return latest if latest.get("contentMd") else None


class AiCommentService(ServiceBase):
    """AI feedback comments attached to a single diary entry."""

    def __init__(self, *args: Any, limit: int = 1, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.limit = limit
        self.error_message = ""

    async def comments(self, diary_id: int | str) -> QueryState:
        target = server_id(diary_id)
        limit = self.limit

        async def fetcher(signal: AbortSignal) -> list[Any]:
            result = await self.api.get(
                f"/api/diary/{target}/ai-comments",
                query={"limit": limit},
                signal=signal,
            )
            return payload_list(result.expect("Failed to load AI comments"))

        return await self._query(cache_keys.diary_ai_comments(target), fetcher)

    async def latest(self, diary_id: int | str) -> Mapping[str, Any] | None:
        state = await self.comments(diary_id)
        return latest_comment(state.data)

    async def request_comment(self, diary_id: int | str) -> Mapping[str, Any] | None:
        """Ask the server to write a new comment and prepend it to the cached list."""

        target = server_id(diary_id)
        key = cache_keys.diary_ai_comments(target)

        def prepend(data: Any) -> None:
            if not isinstance(data, Mapping) or not data.get("aiCommentId"):
                return
            comment_id = data["aiCommentId"]

            def _insert(current: Any) -> list[Any]:
                existing = current if isinstance(current, list) else []
                if any(
                    isinstance(item, Mapping) and item.get("aiCommentId") == comment_id
                    for item in existing
                ):
                    return existing
                return [dict(data), *existing]

            self.cache.set_data(key, _insert)

        async def server_call(signal: AbortSignal):
            return await self.api.post(f"/api/diary/{target}/ai-comment", signal=signal)

        self.error_message = ""
        try:
            result = await self.runner.run(
                MutationDescriptor(
                    name=MUTATION_AI_COMMENT_CREATED,
                    server_call=server_call,
                    error_message=COMMENT_ERROR_MESSAGE,
                    on_success=prepend,
                )
            )
        except MutationFailed as exc:
            self.error_message = exc.user_message
            raise
        return result.data if isinstance(result.data, Mapping) else None


__all__ = ["AiCommentService", "latest_comment"]
