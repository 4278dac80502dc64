"""addEntry — create a calendar event; asks for a title when none was given."""
from __future__ import annotations

import structlog
from datetime import timedelta

from backend.calendar import CalendarClient
from core.entities import EntityType
from dialogs.common import entity_datetime, format_when, to_datetime
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import DialogFrame, Intent

logger = structlog.get_logger()

ADD_ENTRY_DIALOG = "addEntry"
DEFAULT_DURATION = timedelta(hours=1)


def create_library(calendar: CalendarClient) -> DialogLibrary:

    async def create(session: DialogSession, title: str, start) -> None:
        event = await calendar.create_event(
            session.credentials(), session.calendar_id, title, start, start + DEFAULT_DURATION,
        )
        logger.info("calendar_entry_added", address=session.address, event_id=event.id)
        session.send(f"Added '{event.title}' on {format_when(event.start)}.")

    async def begin(session: DialogSession, args: Intent) -> None:
        start = entity_datetime(args)
        if start is None:
            session.send('When should I add it? Try: add "Lunch" 2026-10-20 12:00')
            return

        title = args.entity_value(EntityType.TITLE)
        if not title:
            session.prompt("What should I call it?", step="title", start=start.isoformat())
            return
        await create(session, title, start)

    async def resume(session: DialogSession, frame: DialogFrame, text: str) -> None:
        title = text.strip().strip('"')
        if not title:
            session.prompt("I need a title for the entry. What should I call it?", step="title")
            return
        await create(session, title, to_datetime(frame.data["start"]))

    return DialogLibrary("add-entry", [
        Dialog(
            name=ADD_ENTRY_DIALOG,
            begin=begin,
            resume=resume,
            intents=["AddEntry"],
            requires_calendar=True,
            description="Add an entry to the calendar",
        ),
    ])
