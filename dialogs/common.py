"""
Shared helpers for the calendar dialogs: reading dates out of entities,
finding the event a user means, and formatting replies.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from backend.calendar import CalendarClient, CalendarEvent
from core.entities import EntityType
from dialogs.session import DialogSession
from models.schemas import Intent

SEARCH_WINDOW = timedelta(days=30)


# ── Dates ─────────────────────────────────────────────

def to_datetime(value: Any) -> Optional[datetime]:
    """Parse '2026-10-20 12:00:00' / '2026-10-20' / ISO strings; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.strip().replace(" ", "T"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def entity_datetime(intent: Intent) -> Optional[datetime]:
    """First datetime (or date) the utterance mentioned."""
    for entity_type in (EntityType.DATETIME, EntityType.DATE):
        for entity in intent.find_entities(entity_type):
            parsed = to_datetime(entity.resolved)
            if parsed is not None:
                return parsed
    return None


def entity_day(intent: Intent) -> Optional[date]:
    when = entity_datetime(intent)
    return when.date() if when else None


def entity_range(intent: Intent) -> Optional[tuple[datetime, datetime]]:
    """A datetimerange entity resolved to {"start": ..., "end": ...}."""
    entity = intent.find_entity(EntityType.DATETIME_RANGE)
    if entity is None or not isinstance(entity.normalized_value, dict):
        return None
    start = to_datetime(entity.normalized_value.get("start"))
    end = to_datetime(entity.normalized_value.get("end"))
    if start is None or end is None or end <= start:
        return None
    return start, end


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def format_when(value: datetime) -> str:
    return value.strftime("%a %d %b %Y %H:%M")


# ── Event lookup ──────────────────────────────────────

async def find_events(
    calendar: CalendarClient,
    session: DialogSession,
    title: Optional[str],
    day: Optional[date],
    now: datetime,
) -> list[CalendarEvent]:
    """Events matching a title (case-insensitive substring) within a day, or the next 30 days."""
    if day is not None:
        start, end = day_bounds(day)
    else:
        start, end = now, now + SEARCH_WINDOW
    events = await calendar.list_events(
        session.credentials(), session.calendar_id, start, end, query=title or "",
    )
    if title:
        needle = title.lower()
        events = [e for e in events if needle in e.title.lower()]
    return events


def numbered_choices(events: list[CalendarEvent]) -> str:
    return "\n".join(
        f"{i}. {e.title} ({format_when(e.start)})" for i, e in enumerate(events, start=1)
    )


def pick_choice(text: str, count: int) -> Optional[int]:
    """1-based answer to a numbered prompt → 0-based index, None if not a valid choice."""
    try:
        choice = int(text.strip().rstrip("."))
    except ValueError:
        return None
    if 1 <= choice <= count:
        return choice - 1
    return None


def describe_event(event: CalendarEvent) -> dict[str, str]:
    """Frame-safe (JSON) snapshot of an event offered in a numbered prompt."""
    return {"id": event.id, "title": event.title, "start": event.start.isoformat(),
            "end": event.end.isoformat()}
