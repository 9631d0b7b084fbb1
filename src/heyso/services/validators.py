from datetime import date, datetime
from typing import Any, Iterable


def parse_iso_date(raw: str | date | datetime) -> str:
    """Parse ISO formatted dates, returning a normalised ``YYYY-MM-DD`` string.

    The validator accepts either a bare ISO date (``YYYY-MM-DD``) or an ISO
    datetime string. The datetime variant is truncated to the date component.
    ``ValueError`` is raised for any unparseable input.
    """

    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if not isinstance(raw, str):
        raise ValueError("Date value must be a string")

    value = raw.strip()
    if not value:
        raise ValueError("Date value is empty")

    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        pass

    try:
        normalised = value.replace("Z", "+00:00")
        return datetime.fromisoformat(normalised).date().isoformat()
    except ValueError as exc:
        raise ValueError(f"Invalid ISO date: {raw}") from exc


def parse_month_key(raw: str | date | datetime) -> str:
    """Normalise ``YYYY-MM`` (or any ISO date) to a ``YYYY-MM`` month key."""

    if isinstance(raw, (date, datetime)):
        return raw.strftime("%Y-%m")
    if not isinstance(raw, str):
        raise ValueError("Month value must be a string")
    value = raw.strip()
    if len(value) == 7:
        value = f"{value}-01"
    return parse_iso_date(value)[:7]


def split_tags(raw: Any) -> list[str]:
    """Accept tags as a list or a comma-joined string, as the API returns both."""

    if not raw:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, Iterable):
        return [str(item).strip() for item in raw if str(item or "").strip()]
    return []


def normalize_tags(raw: Any) -> list[str]:
    """Split, trim and de-duplicate tags case-insensitively, keeping first spelling."""

    seen: set[str] = set()
    tags: list[str] = []
    for tag in split_tags(raw):
        folded = tag.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        tags.append(tag)
    return tags
