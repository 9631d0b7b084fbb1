from pathlib import Path
from typing import Any


def str_to_bool(value: str | bool | int | None) -> bool:
    """Convert common truthy / falsy strings and values to `bool`."""

    truthy_values = {"true", "1", "yes", "y", "t", "on"}
    falsy_values = {"false", "0", "no", "n", "f", "off"}

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if not isinstance(value, str):
        raise ValueError(f"Cannot convert '{value}' to a boolean.")

    value = value.strip().lower()

    if value in truthy_values:
        return True
    if value in falsy_values:
        return False
    raise ValueError(f"Cannot convert '{value}' to a boolean.")


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an ``int`` when it is integral, otherwise ``None``.

    Server identifiers arrive as JSON numbers while placeholders created on the
    client are strings such as ``local-01J...``; booleans are never ids.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    return None


def expand_path(configured_path: str | Path) -> Path:
    """Expand ``~`` and make ``configured_path`` absolute relative to the CWD."""

    path = Path(configured_path).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return path.resolve()
