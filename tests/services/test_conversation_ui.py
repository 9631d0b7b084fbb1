from __future__ import annotations

from heyso.services.conversation_ui import (
    INITIAL_STATE,
    MODE_DELETE,
    MODE_IDLE,
    MODE_RENAME,
    ConversationUi,
    UiAction,
    reduce,
)


def test_toggle_menu_opens_and_closes() -> None:
    ui = ConversationUi()

    assert ui.toggle_menu(3).opened_menu_id == 3
    assert ui.toggle_menu(4).opened_menu_id == 4
    assert ui.toggle_menu(4).opened_menu_id is None


def test_rename_flow() -> None:
    ui = ConversationUi()
    ui.toggle_menu(3)

    state = ui.open_rename(3, "old title")
    assert state.mode == MODE_RENAME
    assert state.target_id == 3
    assert state.rename_title == "old title"
    assert state.opened_menu_id is None

    assert ui.change_rename_title("new title").rename_title == "new title"
    assert ui.close_rename() == INITIAL_STATE


def test_delete_flow() -> None:
    ui = ConversationUi()

    state = ui.open_delete(8)
    assert state.mode == MODE_DELETE
    assert state.target_id == 8

    state = ui.close_delete()
    assert state.mode == MODE_IDLE
    assert state.target_id is None


def test_unknown_action_is_ignored() -> None:
    state = reduce(INITIAL_STATE, UiAction.MENU_TOGGLE, conversation_id=1)

    assert reduce(state, "SOMETHING_ELSE") is state


def test_reset_returns_initial_state() -> None:
    ui = ConversationUi()
    ui.open_rename(1, "x")

    assert ui.reset() == INITIAL_STATE
    assert reduce(ui.state, "RESET") == INITIAL_STATE
