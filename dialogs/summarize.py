"""summarize — list the events of one day (today by default)."""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from backend.calendar import CalendarClient
from dialogs.common import day_bounds, entity_day, format_when
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import Intent, utcnow

SUMMARIZE_DIALOG = "summarize"


def create_library(calendar: CalendarClient, clock: Callable[[], datetime] = utcnow) -> DialogLibrary:

    async def begin(session: DialogSession, args: Intent) -> None:
        day = entity_day(args) or clock().date()
        start, end = day_bounds(day)
        events = await calendar.list_events(session.credentials(), session.calendar_id, start, end)

        label = day.strftime("%a %d %b %Y")
        if not events:
            session.send(f"Nothing on your calendar for {label}.")
            return
        lines = "\n".join(f"- {format_when(e.start)} {e.title}" for e in events)
        session.send(f"{len(events)} entries on {label}:\n{lines}")

    return DialogLibrary("summary", [
        Dialog(
            name=SUMMARIZE_DIALOG,
            begin=begin,
            intents=["Summarize"],
            requires_calendar=True,
            description="Summarize a day",
        ),
    ])
