"""checkAvailability — free/busy for a datetime, a range, or a whole day."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from backend.calendar import CalendarClient
from core.entities import EntityType
from dialogs.common import day_bounds, entity_datetime, entity_range, format_when
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import DialogSession
from models.schemas import Intent

CHECK_AVAILABILITY_DIALOG = "checkAvailability"
DEFAULT_SLOT = timedelta(hours=1)


def _window(args: Intent) -> Optional[tuple[datetime, datetime]]:
    explicit = entity_range(args)
    if explicit:
        return explicit
    start = entity_datetime(args)
    if start is None:
        return None
    if args.find_entity(EntityType.DATETIME) is None:
        return day_bounds(start.date())
    return start, start + DEFAULT_SLOT


def create_library(calendar: CalendarClient) -> DialogLibrary:

    async def begin(session: DialogSession, args: Intent) -> None:
        window = _window(args)
        if window is None:
            session.send("For when? e.g. am I free 2026-10-20 15:00")
            return

        start, end = window
        busy = await calendar.free_busy(session.credentials(), session.calendar_id, start, end)
        if not busy:
            session.send(f"You're free from {format_when(start)} to {format_when(end)}.")
            return
        slots = "\n".join(f"- {format_when(b_start)} to {format_when(b_end)}" for b_start, b_end in busy)
        session.send(f"You're busy during:\n{slots}")

    return DialogLibrary("availability", [
        Dialog(
            name=CHECK_AVAILABILITY_DIALOG,
            begin=begin,
            intents=["CheckAvailability"],
            requires_calendar=True,
            description="Check free/busy",
        ),
    ])
