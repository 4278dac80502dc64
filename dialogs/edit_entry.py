"""editEntry — move a matched event to a new start time, keeping its duration."""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Callable

from backend.calendar import CalendarClient
from core.entities import EntityType
from dialogs.common import (
    describe_event, entity_datetime, find_events, format_when, numbered_choices, pick_choice,
    to_datetime,
)
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import DialogFrame, Intent, utcnow

logger = structlog.get_logger()

EDIT_ENTRY_DIALOG = "editEntry"


def create_library(calendar: CalendarClient, clock: Callable[[], datetime] = utcnow) -> DialogLibrary:

    async def move(session: DialogSession, event: dict, new_start: datetime) -> None:
        duration = to_datetime(event["end"]) - to_datetime(event["start"])
        updated = await calendar.update_event(
            session.credentials(), session.calendar_id, event["id"],
            start=new_start, end=new_start + duration,
        )
        logger.info("calendar_entry_moved", address=session.address, event_id=updated.id)
        session.send(f"Moved '{updated.title}' to {format_when(updated.start)}.")

    async def begin(session: DialogSession, args: Intent) -> None:
        title = args.entity_value(EntityType.TITLE)
        new_start = entity_datetime(args)
        if not title or new_start is None:
            session.send('Tell me the entry and the new time, e.g. move "Lunch" to 2026-10-21 13:00')
            return

        events = await find_events(calendar, session, title, None, clock())
        if not events:
            session.send(f"I couldn't find '{title}'.")
            return
        if len(events) == 1:
            await move(session, describe_event(events[0]), new_start)
            return

        session.prompt(
            "Which one should I move?\n" + numbered_choices(events),
            step="choose",
            candidates=[describe_event(e) for e in events],
            new_start=new_start.isoformat(),
        )

    async def resume(session: DialogSession, frame: DialogFrame, text: str) -> None:
        candidates = frame.data.get("candidates", [])
        index = pick_choice(text, len(candidates))
        if index is None:
            session.prompt(f"Please answer with a number from 1 to {len(candidates)}.", step="choose")
            return
        await move(session, candidates[index], to_datetime(frame.data["new_start"]))

    return DialogLibrary("edit-entry", [
        Dialog(
            name=EDIT_ENTRY_DIALOG,
            begin=begin,
            resume=resume,
            intents=["EditEntry"],
            requires_calendar=True,
            description="Move an entry to another time",
        ),
    ])
