"""Transient menu and dialog state for the conversation list."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

MODE_IDLE = "idle"
MODE_RENAME = "rename"
MODE_DELETE = "delete"


class UiAction(str, Enum):
    MENU_TOGGLE = "MENU_TOGGLE"
    MENU_CLOSE = "MENU_CLOSE"
    RENAME_OPEN = "RENAME_OPEN"
    RENAME_CHANGE = "RENAME_CHANGE"
    RENAME_CLOSE = "RENAME_CLOSE"
    DELETE_OPEN = "DELETE_OPEN"
    DELETE_CLOSE = "DELETE_CLOSE"
    RESET = "RESET"


@dataclass(frozen=True, slots=True)
class ConversationUiState:
    opened_menu_id: Any = None
    mode: str = MODE_IDLE
    target_id: Any = None
    rename_title: str = ""


INITIAL_STATE = ConversationUiState()


def reduce(state: ConversationUiState, action: UiAction | str, **payload: Any) -> ConversationUiState:
    """Return the next state; unknown actions leave ``state`` untouched."""

    try:
        kind = UiAction(action)
    except ValueError:
        return state

    conversation_id = payload.get("conversation_id")
    if kind is UiAction.MENU_TOGGLE:
        next_id = None if state.opened_menu_id == conversation_id else conversation_id
        return replace(state, opened_menu_id=next_id)
    if kind is UiAction.MENU_CLOSE:
        return replace(state, opened_menu_id=None)
    if kind is UiAction.RENAME_OPEN:
        return replace(
            state,
            mode=MODE_RENAME,
            target_id=conversation_id,
            rename_title=payload.get("title") or "",
            opened_menu_id=None,
        )
    if kind is UiAction.RENAME_CHANGE:
        return replace(state, rename_title=str(payload.get("value") or ""))
    if kind is UiAction.RENAME_CLOSE:
        return replace(state, mode=MODE_IDLE, target_id=None, rename_title="")
    if kind is UiAction.DELETE_OPEN:
        return replace(
            state, mode=MODE_DELETE, target_id=conversation_id, opened_menu_id=None
        )
    if kind is UiAction.DELETE_CLOSE:
        return replace(state, mode=MODE_IDLE, target_id=None)
    return INITIAL_STATE


class ConversationUi:
    """Mutable holder dispatching actions through :func:`reduce`."""

    def __init__(self) -> None:
        self.state = INITIAL_STATE

    def dispatch(self, action: UiAction | str, **payload: Any) -> ConversationUiState:
        self.state = reduce(self.state, action, **payload)
        return self.state

    def toggle_menu(self, conversation_id: Any) -> ConversationUiState:
        return self.dispatch(UiAction.MENU_TOGGLE, conversation_id=conversation_id)

    def close_menu(self) -> ConversationUiState:
        return self.dispatch(UiAction.MENU_CLOSE)

    def open_rename(self, conversation_id: Any, title: str | None = None) -> ConversationUiState:
        return self.dispatch(UiAction.RENAME_OPEN, conversation_id=conversation_id, title=title)

    def change_rename_title(self, value: str) -> ConversationUiState:
        return self.dispatch(UiAction.RENAME_CHANGE, value=value)

    def close_rename(self) -> ConversationUiState:
        return self.dispatch(UiAction.RENAME_CLOSE)

    def open_delete(self, conversation_id: Any) -> ConversationUiState:
        return self.dispatch(UiAction.DELETE_OPEN, conversation_id=conversation_id)

    def close_delete(self) -> ConversationUiState:
        return self.dispatch(UiAction.DELETE_CLOSE)

    def reset(self) -> ConversationUiState:
        return self.dispatch(UiAction.RESET)


__all__ = [
    "ConversationUi",
    "ConversationUiState",
    "INITIAL_STATE",
    "MODE_DELETE",
    "MODE_IDLE",
    "MODE_RENAME",
    "UiAction",
    "reduce",
]
