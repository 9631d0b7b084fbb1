"""Typed cache keys.

A key is a namespace plus an ordered tuple of parameters. Keys compare by
value, serialise to a stable string, and a shorter key of the same namespace
acts as a prefix selecting every longer key below it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DIARY_ENTRIES = "diaryEntries"
DIARY_DETAIL = "diaryDetail"
DIARY_DAILY = "diaryDaily"
MONTHLY_COUNTS = "monthlyDiaryCounts"
DIARY_MY_TAGS = "diaryMyTags"
DIARY_AI_COMMENTS = "diaryAiComments"
DIARY_NUDGE = "diaryNudge"
AI_CONVERSATIONS = "aiChatConversations"
AI_CONVERSATION = "aiChatConversation"
AI_SUMMARY = "aiChatSummary"

DIARY_NAMESPACES = (
    DIARY_ENTRIES,
    DIARY_DETAIL,
    DIARY_DAILY,
    MONTHLY_COUNTS,
    DIARY_MY_TAGS,
    DIARY_AI_COMMENTS,
    DIARY_NUDGE,
)
AI_NAMESPACES = (AI_CONVERSATIONS, AI_CONVERSATION, AI_SUMMARY)
AUTHENTICATED_NAMESPACES = DIARY_NAMESPACES + AI_NAMESPACES

Param = str | int | None


def _normalize_param(value: Any) -> Param:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    return str(value)


@dataclass(frozen=True, slots=True)
class QueryKey:
    namespace: str
    params: tuple[Param, ...] = ()

    @classmethod
    def of(cls, namespace: str, *params: Any) -> "QueryKey":
        return cls(namespace, tuple(_normalize_param(p) for p in params))

    def serialize(self) -> str:
        parts = [self.namespace]
        parts.extend("~" if p is None else str(p) for p in self.params)
        return ":".join(parts)

    def matches(self, prefix: "QueryKey") -> bool:
        """Return True when ``prefix`` selects this key."""

        if prefix.namespace != self.namespace:
            return False
        if len(prefix.params) > len(self.params):
            return False
        return self.params[: len(prefix.params)] == prefix.params

    def __str__(self) -> str:
        return self.serialize()


def namespace(name: str) -> QueryKey:
    return QueryKey(name)


def diary_entries(page: int, size: int) -> QueryKey:
    return QueryKey.of(DIARY_ENTRIES, page, size)


def diary_detail(diary_id: int | str) -> QueryKey:
    return QueryKey.of(DIARY_DETAIL, diary_id)


def diary_daily(day: str) -> QueryKey:
    return QueryKey.of(DIARY_DAILY, day)


def monthly_counts(month: str) -> QueryKey:
    return QueryKey.of(MONTHLY_COUNTS, month)


def my_tags() -> QueryKey:
    return QueryKey(DIARY_MY_TAGS)


def diary_ai_comments(diary_id: int | str) -> QueryKey:
    return QueryKey.of(DIARY_AI_COMMENTS, diary_id)


def diary_nudge(day: str) -> QueryKey:
    return QueryKey.of(DIARY_NUDGE, day)


def ai_conversations(page: int, size: int) -> QueryKey:
    return QueryKey.of(AI_CONVERSATIONS, page, size)


def ai_conversation(conversation_id: int | str, message_limit: int) -> QueryKey:
    return QueryKey.of(AI_CONVERSATION, conversation_id, message_limit)


def ai_summary(conversation_id: int | str) -> QueryKey:
    return QueryKey.of(AI_SUMMARY, conversation_id)


__all__ = [
    "AI_CONVERSATION",
    "AI_CONVERSATIONS",
    "AI_NAMESPACES",
    "AI_SUMMARY",
    "AUTHENTICATED_NAMESPACES",
    "DIARY_AI_COMMENTS",
    "DIARY_DAILY",
    "DIARY_DETAIL",
    "DIARY_ENTRIES",
    "DIARY_MY_TAGS",
    "DIARY_NAMESPACES",
    "DIARY_NUDGE",
    "MONTHLY_COUNTS",
    "QueryKey",
    "ai_conversation",
    "ai_conversations",
    "ai_summary",
    "diary_ai_comments",
    "diary_daily",
    "diary_detail",
    "diary_entries",
    "diary_nudge",
    "monthly_counts",
    "my_tags",
    "namespace",
]
