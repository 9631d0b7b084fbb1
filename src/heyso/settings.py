from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent


def _resolve_config_dir() -> Path | None:
    env_override = os.environ.get("HEYSO_CONFIG_DIR")
    candidates: list[Path] = []

    if env_override:
        candidates.append(Path(env_override).expanduser())

    candidates.append(Path.cwd() / "config")
    candidates.append(PROJECT_ROOT.parent / "config")

    for candidate in candidates:
        expanded = candidate.expanduser()
        if expanded.is_dir():
            return expanded.resolve()

    if env_override:
        raise RuntimeError(
            f"HEYSO_CONFIG_DIR points to {env_override}, which is not a directory."
        )
    return None


CONFIG_DIR = _resolve_config_dir()


DEFAULTS: dict[str, Any] = {
    "APP_NAME": "Heyso Diary",
    "LOG_LEVEL": "INFO",
    "API": {
        "base_url": "http://127.0.0.1:8080",
        # None waits indefinitely, matching the browser client.
        "timeout": None,
    },
    "STORAGE": {
        "path": "~/.heyso/storage.json",
    },
    "CACHE": {
        "maxsize": 512,
    },
    "DIARY": {
        "page_size": 20,
        "max_page_size": 100,
    },
    "AICHAT": {
        "page_size": 100,
        "message_limit": 100,
        "new_chat_title": "New chat",
    },
    "AI_COMMENTS": {
        "limit": 1,
    },
    "NUDGE": {
        "enabled": True,
        "default_messages": ["특별했던 오늘의 순간들을 남겨볼까요?"],
    },
}

_settings_files: list[Path] = []
if CONFIG_DIR is not None:
    _settings_files = [
        CONFIG_DIR / "settings.toml",
        CONFIG_DIR / ".secrets.toml",
        CONFIG_DIR / "settings.local.toml",
    ]

settings = Dynaconf(
    envvar_prefix="HEYSO",
    settings_files=_settings_files,
    environments=True,
    env_switcher="HEYSO_ENV",
    load_dotenv=True,
    envvar_parse_values=True,
    merge_enabled=True,
    defaults=DEFAULTS,
)


_MISSING = object()


def _ensure_defaults(prefix: str, defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        dotted = f"{prefix}.{key}" if prefix else key
        existing = settings.get(dotted, _MISSING)

        if isinstance(value, dict):
            if existing is _MISSING:
                settings.set(dotted, value.copy())
                existing = settings.get(dotted, _MISSING)
            if isinstance(existing, Mapping):
                _ensure_defaults(dotted, value)
            continue

        if existing is _MISSING:
            settings.set(dotted, value)


_ensure_defaults("", DEFAULTS)


def _coerce_positive_int(dotted: str, default: int) -> None:
    raw = settings.get(dotted, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    if value <= 0:
        value = default
    settings.set(dotted, value)


_coerce_positive_int("CACHE.maxsize", DEFAULTS["CACHE"]["maxsize"])
_coerce_positive_int("DIARY.page_size", DEFAULTS["DIARY"]["page_size"])
_coerce_positive_int("DIARY.max_page_size", DEFAULTS["DIARY"]["max_page_size"])
_coerce_positive_int("AICHAT.page_size", DEFAULTS["AICHAT"]["page_size"])
_coerce_positive_int("AICHAT.message_limit", DEFAULTS["AICHAT"]["message_limit"])

base_url = str(settings.get("API.base_url") or DEFAULTS["API"]["base_url"])
settings.set("API.base_url", base_url.rstrip("/"))

__all__ = ["settings", "DEFAULTS"]
