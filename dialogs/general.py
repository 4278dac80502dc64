"""Help dialog — capability list, also the dispatcher's fallback."""
from __future__ import annotations

from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import Intent

HELP_DIALOG = "help"

HELP_TEXT = (
    "I can manage your calendar. Try:\n"
    '- add "Lunch with Ana" 2026-10-20 12:00\n'
    '- remove "Lunch with Ana"\n'
    '- move "Lunch with Ana" to 2026-10-21 13:00\n'
    "- am I free 2026-10-20 15:00\n"
    "- summarize 2026-10-20\n"
    "- use my primary calendar\n"
    "- login / logout"
)


async def _show_help(session: DialogSession, args: Intent) -> None:
    if args.text and args.name != "Help":
        session.send("Sorry, I didn't understand that.")
    session.send(HELP_TEXT)


def create_library() -> DialogLibrary:
    return DialogLibrary("help", [
        Dialog(
            name=HELP_DIALOG,
            begin=_show_help,
            intents=["Help"],
            description="What the assistant can do",
        ),
    ])
