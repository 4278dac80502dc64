"""removeEntry — delete an event matched by title and/or day."""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Callable

from backend.calendar import CalendarClient
from core.entities import EntityType
from dialogs.common import (
    describe_event, entity_day, find_events, format_when, numbered_choices, pick_choice,
    to_datetime,
)
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import DialogFrame, Intent, utcnow

logger = structlog.get_logger()

REMOVE_ENTRY_DIALOG = "removeEntry"


def create_library(calendar: CalendarClient, clock: Callable[[], datetime] = utcnow) -> DialogLibrary:

    async def remove(session: DialogSession, event_id: str, title: str, start: datetime) -> None:
        await calendar.delete_event(session.credentials(), session.calendar_id, event_id)
        logger.info("calendar_entry_removed", address=session.address, event_id=event_id)
        session.send(f"Removed '{title}' ({format_when(start)}).")

    async def begin(session: DialogSession, args: Intent) -> None:
        title = args.entity_value(EntityType.TITLE)
        day = entity_day(args)
        if not title and day is None:
            session.send("Which entry? Give me its title in quotes, or its date.")
            return

        events = await find_events(calendar, session, title, day, clock())
        if not events:
            session.send("I couldn't find a matching entry.")
            return
        if len(events) == 1:
            await remove(session, events[0].id, events[0].title, events[0].start)
            return

        session.prompt(
            "Which one should I remove?\n" + numbered_choices(events),
            step="choose",
            candidates=[describe_event(e) for e in events],
        )

    async def resume(session: DialogSession, frame: DialogFrame, text: str) -> None:
        candidates = frame.data.get("candidates", [])
        index = pick_choice(text, len(candidates))
        if index is None:
            session.prompt(f"Please answer with a number from 1 to {len(candidates)}.", step="choose")
            return
        chosen = candidates[index]
        await remove(session, chosen["id"], chosen["title"], to_datetime(chosen["start"]))

    return DialogLibrary("remove-entry", [
        Dialog(
            name=REMOVE_ENTRY_DIALOG,
            begin=begin,
            resume=resume,
            intents=["RemoveEntry"],
            requires_calendar=True,
            description="Remove an entry from the calendar",
        ),
    ])
