"""Diary entries: queries, create/edit/delete mutations and tag handling."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from logging import getLogger
from typing import Any, Mapping, Sequence

from heyso.cache import keys as cache_keys
from heyso.cache.invalidation import (
    MUTATION_DIARY_CHANGED,
    MUTATION_DIARY_CREATED,
    MUTATION_DIARY_DELETED,
    plan_for_diary_mutation,
)
from heyso.cache.keys import QueryKey
from heyso.cache.mutations import MutationDescriptor, MutationResult
from heyso.cache.query_cache import QueryState
from heyso.client.errors import ValidationError
from heyso.client.http import AbortSignal
from heyso.services.base import (
    ServiceBase,
    is_local_id,
    local_id,
    payload_list,
    server_id,
)
from heyso.services.validators import normalize_tags, parse_iso_date
from heyso.util import coerce_int

logger = getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_TITLE = "Untitled"

SAVE_ERROR_MESSAGE = "일기를 저장하지 못했습니다."
DELETE_ERROR_MESSAGE = "일기를 삭제하지 못했습니다."
EMPTY_DIARY_MESSAGE = "제목이나 내용을 입력해주세요."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def entry_id(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return None
    value = entry.get("diaryId")
    return value if value is not None else entry.get("id")


def normalize_detail(data: Any) -> dict[str, Any] | None:
    """Return a detail payload with ``tags`` always as a list."""

    if not isinstance(data, Mapping):
        return None
    detail = dict(data)
    detail["tags"] = normalize_tags(detail.get("tags"))
    return detail


def newest_first(items: Any) -> list[Any]:
    return sorted(
        items or [],
        key=lambda item: coerce_int(entry_id(item)) or 0,
        reverse=True,
    )


def created_diary_id(data: Any) -> int | None:
    """The create endpoint answers with a raw number or ``{"diaryId": n}``."""

    if isinstance(data, Mapping):
        return coerce_int(data.get("diaryId"))
    return coerce_int(data)


@dataclass(slots=True)
class DiaryDraft:
    title: str = ""
    content_md: str = ""
    diary_date: str | date | datetime | None = None
    tags: Sequence[str] | str | None = field(default_factory=list)

    def to_payload(self, *, today: date | None = None) -> dict[str, Any]:
        """Validate the draft and build the request body.

        Raises :class:`ValidationError` before any request is made when both
        title and content are blank or the date cannot be parsed.
        """

        title = (self.title or "").strip()
        content = self.content_md or ""
        if not title and not content.strip():
            raise ValidationError(EMPTY_DIARY_MESSAGE)

        raw_date = self.diary_date or today or date.today()
        try:
            diary_date = parse_iso_date(raw_date)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        return {
            "title": title or DEFAULT_TITLE,
            "contentMd": content,
            "diaryDate": diary_date,
            "tags": normalize_tags(self.tags),
        }


class DiaryService(ServiceBase):
    """Read and write diary entries through the shared query cache."""

    def __init__(self, *args: Any, page_size: int = 20, max_page_size: int = 100, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.page_size = page_size
        self.max_page_size = max_page_size

    def _page(self, page: int | None, size: int | None) -> tuple[int, int]:
        safe_page = max(1, int(page or DEFAULT_PAGE))
        safe_size = min(self.max_page_size, max(1, int(size or self.page_size)))
        return safe_page, safe_size

    # -- queries -------------------------------------------------------------

    async def entries(self, page: int | None = None, size: int | None = None) -> QueryState:
        page, size = self._page(page, size)

        async def fetcher(signal: AbortSignal) -> list[Any]:
            result = await self.api.get(
                "/api/diary", query={"page": page, "size": size}, signal=signal
            )
            return payload_list(result.expect("Failed to load diary entries"), "diaries")

        return await self._query(cache_keys.diary_entries(page, size), fetcher)

    async def recent_entries(
        self, page: int | None = None, size: int | None = None
    ) -> list[dict[str, Any]]:
        """Entries newest first; numeric ``diaryId`` is the stable ordering."""

        state = await self.entries(page, size)
        return newest_first(state.data)

    async def daily(self, day: str | date) -> QueryState:
        try:
            day_key = parse_iso_date(day)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        async def fetcher(signal: AbortSignal) -> list[Any]:
            result = await self.api.get(
                "/api/diary/daily", query={"day": day_key}, signal=signal
            )
            return payload_list(result.expect("Failed to load daily diaries"), "diaries")

        return await self._query(cache_keys.diary_daily(day_key), fetcher)

    async def monthly_counts(self, month: str) -> QueryState:
        async def fetcher(signal: AbortSignal) -> list[Any]:
            result = await self.api.get(
                "/api/diary/monthly", query={"month": month}, signal=signal
            )
            return payload_list(result.expect("Failed to load monthly counts"))

        return await self._query(cache_keys.monthly_counts(month), fetcher)

    async def detail(self, diary_id: int | str) -> QueryState:
        target = server_id(diary_id)

        async def fetcher(signal: AbortSignal) -> dict[str, Any] | None:
            result = await self.api.get(f"/api/diary/{target}", signal=signal)
            return normalize_detail(result.expect("Failed to load diary detail"))

        return await self._query(cache_keys.diary_detail(target), fetcher)

    async def my_tags(self) -> QueryState:
        async def fetcher(signal: AbortSignal) -> list[str]:
            result = await self.api.get("/api/diary/mytags", signal=signal)
            data = result.expect("Failed to load tags")
            if isinstance(data, Mapping):
                data = data.get("tags")
            return normalize_tags(data if isinstance(data, list) else [])

        return await self._query(cache_keys.my_tags(), fetcher)

    # -- mutations -----------------------------------------------------------

    def _known_date(self, diary_id: Any) -> str | None:
        detail = self.cache.get_data(cache_keys.diary_detail(diary_id))
        if isinstance(detail, Mapping) and detail.get("diaryDate"):
            return str(detail["diaryDate"])
        for key in self._cached_keys(cache_keys.DIARY_ENTRIES):
            for item in self.cache.get_data(key) or []:
                if entry_id(item) == diary_id and isinstance(item, Mapping):
                    value = item.get("diaryDate") or item.get("date")
                    return str(value) if value else None
        return None

    async def save(
        self,
        draft: DiaryDraft,
        diary_id: int | str | None = None,
        *,
        refetch: bool = False,
    ) -> MutationResult:
        """Create (``diary_id`` is None) or fully replace a diary entry."""

        payload = draft.to_payload()
        target = coerce_int(diary_id) if diary_id is not None else None
        if diary_id is not None and target is None:
            raise ValidationError(f"Invalid diary id: {diary_id!r}")

        if target is None:
            descriptor = self._create_descriptor(payload)
        else:
            descriptor = self._edit_descriptor(target, payload)

        result = await self.runner.run(descriptor)
        if refetch:
            await self.cache.refetch(descriptor.invalidate)
        return result

    def _create_descriptor(self, payload: dict[str, Any]) -> MutationDescriptor:
        temp_id = local_id()
        now = _now_iso()
        placeholder = {
            "diaryId": temp_id,
            "title": payload["title"],
            "contentMd": payload["contentMd"],
            "diaryDate": payload["diaryDate"],
            "tags": list(payload["tags"]),
            "createdAt": now,
            "updatedAt": now,
            "pending": True,
        }
        # Placeholders only go on first pages; later pages shift server-side.
        affected = tuple(
            key
            for key in self._cached_keys(cache_keys.DIARY_ENTRIES)
            if key.params[:1] == (DEFAULT_PAGE,)
        )
        plan = plan_for_diary_mutation(
            MUTATION_DIARY_CREATED, dates=(payload["diaryDate"],)
        )

        def apply(_key: QueryKey, current: Any) -> Any:
            return [dict(placeholder), *(current or [])]

        def rollback(_key: QueryKey, current: Any) -> Any:
            return [item for item in current or [] if entry_id(item) != temp_id]

        def reconcile(_key: QueryKey, data: Any, current: Any) -> Any:
            created_id = created_diary_id(data)
            items = list(current or [])
            if created_id is None:
                return items
            if any(entry_id(item) == created_id for item in items):
                return [item for item in items if entry_id(item) != temp_id]
            reconciled: list[Any] = []
            for item in items:
                if entry_id(item) == temp_id:
                    item = {k: v for k, v in item.items() if k != "pending"}
                    item["diaryId"] = created_id
                reconciled.append(item)
            return reconciled

        async def server_call(signal: AbortSignal):
            return await self.api.post("/api/diary", payload, signal=signal)

        return MutationDescriptor(
            name=MUTATION_DIARY_CREATED,
            server_call=server_call,
            affected_keys=affected,
            apply=apply,
            reconcile=reconcile,
            rollback=rollback,
            invalidate=plan.invalidate,
            remove=plan.remove,
            error_message=SAVE_ERROR_MESSAGE,
            context={"temp_id": temp_id},
        )

    def _edit_descriptor(self, diary_id: int, payload: dict[str, Any]) -> MutationDescriptor:
        body = {**payload, "diaryId": diary_id}
        previous_date = self._known_date(diary_id)
        plan = plan_for_diary_mutation(
            MUTATION_DIARY_CHANGED,
            diary_id=diary_id,
            dates=(previous_date, payload["diaryDate"]),
        )
        detail_key = cache_keys.diary_detail(diary_id)
        affected = (detail_key, *self._cached_keys(cache_keys.DIARY_ENTRIES))
        fields = {
            "title": payload["title"],
            "contentMd": payload["contentMd"],
            "diaryDate": payload["diaryDate"],
            "tags": list(payload["tags"]),
            "updatedAt": _now_iso(),
        }

        def _merge(item: Any, updates: Mapping[str, Any]) -> Any:
            if not isinstance(item, Mapping):
                return item
            return {**item, **updates}

        def apply(key: QueryKey, current: Any) -> Any:
            if key == detail_key:
                return _merge(current, fields)
            return [
                _merge(item, fields) if entry_id(item) == diary_id else item
                for item in current or []
            ]

        def reconcile(key: QueryKey, data: Any, current: Any) -> Any:
            server = normalize_detail(data) or {}
            if key == detail_key:
                return {**(current or {}), **server}
            return [
                _merge(item, server) if entry_id(item) == diary_id else item
                for item in current or []
            ]

        async def server_call(signal: AbortSignal):
            return await self.api.post(f"/api/diary/{diary_id}/edit", body, signal=signal)

        return MutationDescriptor(
            name=MUTATION_DIARY_CHANGED,
            server_call=server_call,
            affected_keys=affected,
            apply=apply,
            reconcile=reconcile,
            invalidate=plan.invalidate,
            remove=plan.remove,
            error_message=SAVE_ERROR_MESSAGE,
        )

    async def delete(self, diary_id: int | str, *, refetch: bool = False) -> MutationResult:
        if is_local_id(diary_id):
            raise ValidationError("Cannot delete an entry that is still being saved")
        target = coerce_int(diary_id)
        if target is None:
            raise ValidationError(f"Invalid diary id: {diary_id!r}")

        plan = plan_for_diary_mutation(
            MUTATION_DIARY_DELETED,
            diary_id=target,
            dates=(self._known_date(target),),
        )
        affected = self._cached_keys(cache_keys.DIARY_ENTRIES) + self._cached_keys(
            cache_keys.DIARY_DAILY
        )

        def apply(_key: QueryKey, current: Any) -> Any:
            return [item for item in current or [] if entry_id(item) != target]

        async def server_call(signal: AbortSignal):
            return await self.api.post(f"/api/diary/{target}/delete", signal=signal)

        descriptor = MutationDescriptor(
            name=MUTATION_DIARY_DELETED,
            server_call=server_call,
            affected_keys=affected,
            apply=apply,
            invalidate=plan.invalidate,
            remove=plan.remove,
            error_message=DELETE_ERROR_MESSAGE,
        )
        result = await self.runner.run(descriptor)
        if refetch:
            await self.cache.refetch(plan.invalidate)
        return result


__all__ = [
    "DiaryDraft",
    "DiaryService",
    "created_diary_id",
    "entry_id",
    "newest_first",
    "normalize_detail",
]
