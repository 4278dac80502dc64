"""
primaryCalendar — selects (Action=set) or reports the calendar the other
dialogs operate on. Also the default follow-up after a login.
"""
from __future__ import annotations

import structlog

from backend.calendar import CalendarClient
from core.entities import ActionValue, EntityType
from dialogs.models import Dialog, DialogLibrary
from dialogs.session import CALENDAR_ID, DialogSession
from models.schemas import Intent

logger = structlog.get_logger()

PRIMARY_CALENDAR_DIALOG = "primaryCalendar"
PRIMARY_CALENDAR_INTENT = "PrimaryCalendar"


def create_library(calendar: CalendarClient) -> DialogLibrary:

    async def begin(session: DialogSession, args: Intent) -> None:
        action = args.entity_value(EntityType.ACTION)

        if action == ActionValue.SET or session.calendar_id is None:
            info = await calendar.get_primary_calendar(session.credentials())
            session.set(CALENDAR_ID, info.id)
            logger.info("calendar_selected", address=session.address, calendar_id=info.id)
            session.send(f"I'll use your calendar '{info.summary or info.id}' from now on.")
            return

        session.send(f"I'm using the calendar '{session.calendar_id}'.")

    return DialogLibrary("calendar-selection", [
        Dialog(
            name=PRIMARY_CALENDAR_DIALOG,
            begin=begin,
            intents=[PRIMARY_CALENDAR_INTENT],
            requires_auth=True,
            description="Select or report the primary calendar",
        ),
    ])
