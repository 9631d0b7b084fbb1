"""Command line front-end: ``python -m heyso``."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any, Sequence

from dotenv import load_dotenv
from rich.box import ROUNDED
from rich.console import Console
from rich.table import Table

from heyso.client.errors import (
    AuthenticationError,
    HeysoError,
    MutationFailed,
    ValidationError,
)
from heyso.services.calendar import CalendarMonth, shift_month
from heyso.services.container import HeysoServices
from heyso.services.diary import DiaryDraft, newest_first
from heyso.services.validators import normalize_tags
from heyso.settings import settings

load_dotenv()

console = Console()

TIER_GLYPHS = {None: "·", 0: "░", 1: "▒", 2: "▓", 3: "█", 4: "█"}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else str(settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _table(*columns: str) -> Table:
    table = Table(box=ROUNDED, show_header=True, expand=False, padding=(0, 1))
    for column in columns:
        table.add_column(column)
    return table


def _render_month(month: CalendarMonth) -> Table:
    table = Table(title=f"{month.label} ({month.total})", box=ROUNDED)
    for name in ("Mo", "Tu", "We", "Th", "Fr", "Sa", "Su"):
        table.add_column(name, justify="center")
    for week in month.weeks:
        cells = []
        for day in week.days:
            if not day.in_month:
                cells.append("")
                continue
            glyph = TIER_GLYPHS.get(day.tier, "·")
            cells.append(f"{int(day.date[-2:])}\n{glyph}")
        table.add_row(*cells)
    return table


def _require_session(services: HeysoServices) -> bool:
    if services.session.get_session().is_authenticated:
        return True
    console.print("[red]Not signed in.[/red] Run `python -m heyso login <google-id-token>`.")
    return False


async def _cmd_status(services: HeysoServices, _args: argparse.Namespace) -> int:
    session = services.session.get_session()
    if session.is_authenticated:
        who = session.profile.get("nickname") or session.profile.get("email") or "?"
        console.print(f"Signed in as [bold]{who}[/bold]")
    else:
        console.print("Signed out")
    return 0


async def _cmd_login(services: HeysoServices, args: argparse.Namespace) -> int:
    try:
        session = await services.session.login_with_google(services.api, args.id_token)
    except AuthenticationError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print(f"Signed in as [bold]{session.profile.get('nickname', '?')}[/bold]")
    return 0


async def _cmd_logout(services: HeysoServices, _args: argparse.Namespace) -> int:
    services.session.logout()
    console.print("Signed out")
    return 0


async def _cmd_diaries(services: HeysoServices, args: argparse.Namespace) -> int:
    if not _require_session(services):
        return 1
    try:
        if args.day:
            state = await services.diary.daily(args.day)
        else:
            state = await services.diary.entries(args.page, args.size)
    except ValidationError as exc:
        console.print(f"[red]{exc}[/red]")
        return 2
    entries = newest_first(state.data)
    if state.is_error:
        console.print(f"[red]Failed to load diaries: {state.error}[/red]")
        return 1
    table = _table("id", "date", "title", "tags")
    for entry in entries:
        table.add_row(
            str(entry.get("diaryId", "")),
            str(entry.get("diaryDate", "")),
            str(entry.get("title", "")),
            ", ".join(normalize_tags(entry.get("tags"))),
        )
    console.print(table)
    return 0


async def _cmd_write(services: HeysoServices, args: argparse.Namespace) -> int:
    if not _require_session(services):
        return 1
    draft = DiaryDraft(
        title=args.title or "",
        content_md=args.content or "",
        diary_date=args.date,
        tags=args.tags or [],
    )
    try:
        result = await services.diary.save(draft, args.edit)
    except MutationFailed as exc:
        console.print(f"[red]{exc.user_message}[/red]")
        return 1
    except HeysoError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print(f"Saved (status {result.status})")
    return 0


async def _cmd_delete(services: HeysoServices, args: argparse.Namespace) -> int:
    if not _require_session(services):
        return 1
    try:
        await services.diary.delete(args.diary_id)
    except MutationFailed as exc:
        console.print(f"[red]{exc.user_message}[/red]")
        return 1
    console.print(f"Deleted diary {args.diary_id}")
    return 0


async def _cmd_calendar(services: HeysoServices, args: argparse.Namespace) -> int:
    if not _require_session(services):
        return 1
    try:
        month = shift_month(args.month, args.offset) if args.offset else args.month
        grid = await services.calendar.month(month)
    except ValidationError as exc:
        console.print(f"[red]{exc}[/red]")
        return 2
    if grid.is_error:
        console.print("[yellow]Monthly counts unavailable; showing an empty month.[/yellow]")
    console.print(_render_month(grid))
    return 0


async def _cmd_chat(services: HeysoServices, args: argparse.Namespace) -> int:
    if not _require_session(services):
        return 1
    chat = services.aichat
    if args.conversation_id is None:
        state = await chat.conversations()
        if chat.error_message:
            console.print(f"[red]{chat.error_message}[/red]")
            return 1
        table = _table("id", "title", "updated")
        for item in state.data or []:
            table.add_row(
                str(item.get("conversationId", "")),
                str(item.get("title", "")),
                str(item.get("updatedAt", "")),
            )
        console.print(table)
        return 0

    conversation_id: Any = args.conversation_id
    if conversation_id.isdigit():
        conversation_id = int(conversation_id)
    chat.select(conversation_id)
    await chat.conversation(conversation_id)
    if args.message:
        try:
            await chat.send_message(args.message, conversation_id)
        except MutationFailed:
            console.print(f"[red]{chat.error_message}[/red]")
            return 1
    for message in chat.messages(conversation_id):
        role = message.get("role", "?")
        style = "bold cyan" if role == "USER" else "green"
        console.print(f"[{style}]{role}[/{style}] {message.get('content', '')}")
    return 0


COMMANDS = {
    "status": _cmd_status,
    "login": _cmd_login,
    "logout": _cmd_logout,
    "diaries": _cmd_diaries,
    "write": _cmd_write,
    "delete": _cmd_delete,
    "calendar": _cmd_calendar,
    "chat": _cmd_chat,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heyso", description=f"{settings.APP_NAME} client")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Validate the stored session and show who is signed in")

    login = sub.add_parser("login", help="Sign in with a Google ID token")
    login.add_argument("id_token")

    sub.add_parser("logout", help="Forget the stored session")

    diaries = sub.add_parser("diaries", help="List diary entries")
    diaries.add_argument("--page", type=int, default=1)
    diaries.add_argument("--size", type=int, default=None)
    diaries.add_argument("--day", help="Only entries for YYYY-MM-DD")

    write = sub.add_parser("write", help="Create or edit a diary entry")
    write.add_argument("--title")
    write.add_argument("--content")
    write.add_argument("--date", help="YYYY-MM-DD (defaults to today)")
    write.add_argument("--tag", dest="tags", action="append")
    write.add_argument("--edit", type=int, default=None, help="Diary id to replace")

    delete = sub.add_parser("delete", help="Delete a diary entry")
    delete.add_argument("diary_id", type=int)

    calendar = sub.add_parser("calendar", help="Show a month of diary activity")
    calendar.add_argument("month", help="YYYY-MM")
    calendar.add_argument("--offset", type=int, default=0, help="Shift by N months")

    chat = sub.add_parser("chat", help="List conversations or talk in one")
    chat.add_argument("conversation_id", nargs="?")
    chat.add_argument("-m", "--message")

    return parser


async def _run(args: argparse.Namespace) -> int:
    async with HeysoServices.create() as services:
        return await COMMANDS[args.command](services, args)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
