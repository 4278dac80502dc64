"""
Dialog libraries for the calendar assistant.

Quick start:
  from dialogs import create_default_registry
  registry = create_default_registry(calendar_client)
  dialog = registry.find_by_intent("AddEntry")
"""
from datetime import datetime
from typing import Callable

from backend.calendar import CalendarClient
from dialogs import (
    account, add_entry, check_availability, edit_entry, general, primary_calendar, remove_entry,
    summarize,
)
from dialogs.models import Dialog, DialogLibrary
from dialogs.registry import DialogRegistry
from dialogs.session import CALENDAR_ID, CREDENTIALS, DialogSession
from models.schemas import utcnow


def create_default_libraries(
    calendar: CalendarClient, clock: Callable[[], datetime] = utcnow,
) -> list[DialogLibrary]:
    return [
        general.create_library(),
        account.create_library(),
        primary_calendar.create_library(calendar),
        add_entry.create_library(calendar),
        remove_entry.create_library(calendar, clock),
        edit_entry.create_library(calendar, clock),
        check_availability.create_library(calendar),
        summarize.create_library(calendar, clock),
    ]


def create_default_registry(
    calendar: CalendarClient, clock: Callable[[], datetime] = utcnow,
) -> DialogRegistry:
    registry = DialogRegistry()
    registry.register_all(*create_default_libraries(calendar, clock))
    return registry


__all__ = [
    "Dialog", "DialogLibrary", "DialogRegistry", "DialogSession",
    "CALENDAR_ID", "CREDENTIALS",
    "create_default_libraries", "create_default_registry",
]
