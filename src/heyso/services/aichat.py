"""AI chat conversations: list, detail, summary and message sending."""

from __future__ import annotations

from datetime import datetime, timezone
from logging import getLogger
from typing import Any, Mapping

from ulid import ULID

from heyso.cache import keys as cache_keys
from heyso.cache.invalidation import (
    MUTATION_CONVERSATION_CREATED,
    MUTATION_CONVERSATION_DELETED,
    MUTATION_CONVERSATION_RENAMED,
    MUTATION_CONVERSATION_UPDATED,
    MUTATION_MESSAGE_SENT,
    plan_for_chat_mutation,
)
from heyso.cache.keys import QueryKey
from heyso.cache.mutations import MutationDescriptor, MutationResult
from heyso.cache.query_cache import QueryState
from heyso.client.errors import MutationFailed, ValidationError
from heyso.client.http import AbortSignal
from heyso.services.base import ServiceBase, local_id, payload_list

logger = getLogger(__name__)

DEFAULT_PAGE = 1

LIST_ERROR_MESSAGE = "대화 목록을 불러오지 못했습니다."
DETAIL_ERROR_MESSAGE = "대화 내용을 불러오지 못했습니다."
CREATE_ERROR_MESSAGE = "새 대화를 만들지 못했습니다."
SEND_ERROR_MESSAGE = "메시지를 전송하지 못했습니다."
RENAME_ERROR_MESSAGE = "이름을 변경하지 못했습니다."
SETTINGS_ERROR_MESSAGE = "대화방 설정을 저장하지 못했습니다."
DELETE_ERROR_MESSAGE = "대화방 삭제에 실패했습니다."

ROLE_USER = "USER"
ROLE_ASSISTANT = "ASSISTANT"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def conversation_id_of(item: Any) -> Any:
    return item.get("conversationId") if isinstance(item, Mapping) else None


def message_id_of(message: Any) -> Any:
    return message.get("messageId") if isinstance(message, Mapping) else None


def last_server_message_id(messages: Any) -> int | None:
    """Return the newest numeric message id; ``local-`` ids are skipped."""

    last: int | None = None
    for message in messages or ():
        value = message_id_of(message)
        if isinstance(value, int) and not isinstance(value, bool):
            last = value
    return last


class AiChatService(ServiceBase):
    """Conversation queries and mutations plus the selection/banner state."""

    def __init__(
        self,
        *args: Any,
        page_size: int = 100,
        message_limit: int = 100,
        new_chat_title: str = "New chat",
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.page_size = page_size
        self.message_limit = message_limit
        self.new_chat_title = new_chat_title
        self.active_conversation_id: int | str | None = None
        self.error_message = ""

    # -- keys ----------------------------------------------------------------

    @property
    def list_key(self) -> QueryKey:
        return cache_keys.ai_conversations(DEFAULT_PAGE, self.page_size)

    def detail_key(self, conversation_id: int | str) -> QueryKey:
        return cache_keys.ai_conversation(conversation_id, self.message_limit)

    def select(self, conversation_id: int | str | None) -> None:
        self.active_conversation_id = conversation_id

    # -- queries -------------------------------------------------------------

    def _track(self, state: QueryState, message: str) -> QueryState:
        if state.is_disabled or state.is_loading:
            return state
        if state.is_error:
            self.error_message = message
        elif state.has_data:
            self.error_message = ""
        return state

    async def conversations(self) -> QueryState:
        page_size = self.page_size

        async def fetcher(signal: AbortSignal) -> list[Any]:
            result = await self.api.get(
                "/api/aichat/conversations",
                query={"page": DEFAULT_PAGE, "size": page_size},
                signal=signal,
            )
            return payload_list(
                result.expect("Failed to load conversations"), "conversations"
            )

        state = await self._query(self.list_key, fetcher)
        return self._track(state, LIST_ERROR_MESSAGE)

    async def conversation(self, conversation_id: int | str | None = None) -> QueryState:
        target = conversation_id if conversation_id is not None else self.active_conversation_id
        if target is None:
            return QueryState(key=cache_keys.namespace(cache_keys.AI_CONVERSATION), is_disabled=True)
        limit = self.message_limit

        async def fetcher(signal: AbortSignal) -> Any:
            result = await self.api.get(
                f"/api/aichat/conversations/{target}",
                query={"messageLimit": limit},
                signal=signal,
            )
            return result.expect("Failed to load conversation detail")

        state = await self._query(self.detail_key(target), fetcher)
        return self._track(state, DETAIL_ERROR_MESSAGE)

    async def summary(self, conversation_id: int | str | None = None) -> QueryState:
        """Fetch the summary; a non-2xx answer means no summary rather than an error."""

        target = conversation_id if conversation_id is not None else self.active_conversation_id
        if target is None:
            return QueryState(key=cache_keys.namespace(cache_keys.AI_SUMMARY), is_disabled=True)

        async def fetcher(signal: AbortSignal) -> Any:
            result = await self.api.get(
                f"/api/aichat/conversations/{target}/summary", signal=signal
            )
            return result.data if result.ok else None

        return await self._query(cache_keys.ai_summary(target), fetcher)

    def messages(self, conversation_id: int | str | None = None) -> list[Any]:
        target = conversation_id if conversation_id is not None else self.active_conversation_id
        if target is None:
            return []
        detail = self.cache.get_data(self.detail_key(target))
        if not isinstance(detail, Mapping):
            return []
        return list(detail.get("messages") or [])

    def active_conversation(self) -> Mapping[str, Any] | None:
        target = self.active_conversation_id
        if target is None:
            return None
        detail = self.cache.get_data(self.detail_key(target))
        if conversation_id_of(detail) == target:
            return detail
        for item in self.cache.get_data(self.list_key) or []:
            if conversation_id_of(item) == target:
                return item
        return None

    # -- mutations -----------------------------------------------------------

    async def _run(self, descriptor: MutationDescriptor) -> MutationResult:
        try:
            return await self.runner.run(descriptor)
        except MutationFailed as exc:
            self.error_message = exc.user_message
            raise

    async def create_conversation(self) -> int | str | None:
        plan = plan_for_chat_mutation(MUTATION_CONVERSATION_CREATED)
        title = self.new_chat_title

        async def server_call(signal: AbortSignal):
            return await self.api.post(
                "/api/aichat/conversations", {"title": title}, signal=signal
            )

        self.error_message = ""
        result = await self._run(
            MutationDescriptor(
                name=MUTATION_CONVERSATION_CREATED,
                server_call=server_call,
                invalidate=plan.invalidate,
                error_message=CREATE_ERROR_MESSAGE,
            )
        )
        created_id = conversation_id_of(result.data)
        if created_id is not None:
            self.cache.set_data(
                self.detail_key(created_id),
                {"conversationId": created_id, "messages": []},
            )
            self.cache.set_data(cache_keys.ai_summary(created_id), None)
        self.select(created_id)
        logger.debug("Created conversation %s", created_id)
        return created_id

    async def send_message(
        self, text: str, conversation_id: int | str | None = None
    ) -> MutationResult:
        """Append the message optimistically, then reconcile with the server reply."""

        target = conversation_id if conversation_id is not None else self.active_conversation_id
        if target is None:
            raise ValidationError("No conversation selected")
        message_text = (text or "").strip()
        if not message_text:
            raise ValidationError("Message is empty")

        detail_key = self.detail_key(target)
        list_key = self.list_key
        temp_id = local_id()
        fallback_assistant_id = f"assistant-{ULID()}"
        sent_at = _now_iso()
        parent_id = last_server_message_id(self.messages(target))
        plan = plan_for_chat_mutation(MUTATION_MESSAGE_SENT, conversation_id=target)
        body = {
            "userContent": message_text,
            "userClientMessageId": temp_id,
            "parentMessageId": parent_id,
            "assistantContentFormat": "text",
        }

        def apply(key: QueryKey, current: Any) -> Any:
            if key != detail_key:
                return current
            base = dict(current) if isinstance(current, Mapping) else {"conversationId": target}
            base["messages"] = [
                *(base.get("messages") or []),
                {
                    "messageId": temp_id,
                    "role": ROLE_USER,
                    "content": message_text,
                    "createdAt": sent_at,
                },
            ]
            return base

        def rollback(key: QueryKey, current: Any) -> Any:
            if key != detail_key or not isinstance(current, Mapping):
                return current
            return {
                **current,
                "messages": [
                    message
                    for message in current.get("messages") or []
                    if message_id_of(message) != temp_id
                ],
            }

        def reconcile(key: QueryKey, data: Any, current: Any) -> Any:
            reply = data if isinstance(data, Mapping) else {}
            if key == list_key:
                return [
                    {**item, "updatedAt": sent_at}
                    if conversation_id_of(item) == target
                    else item
                    for item in current or []
                ]
            if not isinstance(current, Mapping):
                return current

            user_id = reply.get("userMessageId")
            messages: list[Any] = []
            seen_user = False
            for message in current.get("messages") or []:
                message_id = message_id_of(message)
                if message_id == temp_id and user_id is not None:
                    if seen_user:
                        continue
                    message = {**message, "messageId": user_id}
                if user_id is not None and message_id_of(message) == user_id:
                    if seen_user:
                        continue
                    seen_user = True
                messages.append(message)

            assistant_content = reply.get("assistantContent")
            assistant_id = reply.get("assistantMessageId") or fallback_assistant_id
            if assistant_content and not any(
                message_id_of(message) == assistant_id for message in messages
            ):
                messages.append(
                    {
                        "messageId": assistant_id,
                        "role": ROLE_ASSISTANT,
                        "content": assistant_content,
                        "createdAt": _now_iso(),
                    }
                )
            return {**current, "messages": messages}

        async def server_call(signal: AbortSignal):
            return await self.api.post(
                f"/api/aichat/conversations/{target}/assistant-reply",
                body,
                signal=signal,
            )

        affected = (detail_key,)
        if self.cache.get_data(list_key) is not None:
            affected = (detail_key, list_key)

        self.error_message = ""
        return await self._run(
            MutationDescriptor(
                name=MUTATION_MESSAGE_SENT,
                server_call=server_call,
                affected_keys=affected,
                apply=apply,
                reconcile=reconcile,
                rollback=rollback,
                invalidate=plan.invalidate,
                error_message=SEND_ERROR_MESSAGE,
                seed_missing=True,
                context={"temp_id": temp_id},
            )
        )

    def _patch_descriptor(
        self,
        name: str,
        conversation_id: int | str,
        fields: Mapping[str, Any],
        error_message: str,
    ) -> MutationDescriptor:
        detail_key = self.detail_key(conversation_id)
        plan = plan_for_chat_mutation(name, conversation_id=conversation_id)
        body = dict(fields)

        def apply(key: QueryKey, current: Any) -> Any:
            if key == detail_key:
                return {**current, **body} if isinstance(current, Mapping) else current
            return [
                {**item, **body} if conversation_id_of(item) == conversation_id else item
                for item in current or []
            ]

        async def server_call(signal: AbortSignal):
            return await self.api.post(
                f"/api/aichat/conversations/{conversation_id}/update",
                body,
                signal=signal,
            )

        return MutationDescriptor(
            name=name,
            server_call=server_call,
            affected_keys=(self.list_key, detail_key),
            apply=apply,
            invalidate=plan.invalidate,
            remove=plan.remove,
            error_message=error_message,
        )

    async def rename_conversation(
        self, conversation_id: int | str, title: str
    ) -> MutationResult:
        clean = (title or "").strip()
        if not clean:
            raise ValidationError("Conversation title is empty")
        self.error_message = ""
        return await self._run(
            self._patch_descriptor(
                MUTATION_CONVERSATION_RENAMED,
                conversation_id,
                {"title": clean},
                RENAME_ERROR_MESSAGE,
            )
        )

    async def update_settings(
        self,
        conversation_id: int | str,
        *,
        model: str | None = None,
        system_message: str | None = None,
        temperature: float | None = None,
        max_context_messages: int | None = None,
    ) -> MutationResult:
        fields = {
            "model": model,
            "systemMessage": system_message,
            "temperature": temperature,
            "maxContextMessages": max_context_messages,
        }
        fields = {key: value for key, value in fields.items() if value is not None}
        if not fields:
            raise ValidationError("Nothing to update")
        if "temperature" in fields and not 0 <= float(fields["temperature"]) <= 2:
            raise ValidationError("Temperature must be between 0 and 2")
        if "maxContextMessages" in fields and int(fields["maxContextMessages"]) < 1:
            raise ValidationError("maxContextMessages must be positive")
        self.error_message = ""
        return await self._run(
            self._patch_descriptor(
                MUTATION_CONVERSATION_UPDATED,
                conversation_id,
                fields,
                SETTINGS_ERROR_MESSAGE,
            )
        )

    async def delete_conversation(self, conversation_id: int | str) -> int | str | None:
        """Delete a conversation and return the id selected afterwards."""

        plan = plan_for_chat_mutation(
            MUTATION_CONVERSATION_DELETED, conversation_id=conversation_id
        )

        def apply(_key: QueryKey, current: Any) -> Any:
            return [
                item for item in current or [] if conversation_id_of(item) != conversation_id
            ]

        async def server_call(signal: AbortSignal):
            return await self.api.post(
                f"/api/aichat/conversations/{conversation_id}/delete", signal=signal
            )

        self.error_message = ""
        await self._run(
            MutationDescriptor(
                name=MUTATION_CONVERSATION_DELETED,
                server_call=server_call,
                affected_keys=(self.list_key,),
                apply=apply,
                remove=plan.remove,
                error_message=DELETE_ERROR_MESSAGE,
            )
        )

        state = await self.conversations()
        if self.active_conversation_id in (None, conversation_id):
            remaining = list(state.data or [])
            self.select(conversation_id_of(remaining[0]) if remaining else None)
        return self.active_conversation_id


__all__ = [
    "AiChatService",
    "conversation_id_of",
    "last_server_message_id",
    "message_id_of",
]
