"""
Dialog Models — named units of conversational logic and their bundles.

A Dialog is a pair of async handlers:
  begin(session, args)          — args is an Intent, recognized or synthesized
  resume(session, frame, text)  — the user answered a prompt this dialog asked

Gates are declared, not coded: the dispatcher checks `requires_auth` and
`requires_calendar` before `begin` runs, so a dialog never has to know how
login works.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from models.schemas import DialogFrame, Intent

if TYPE_CHECKING:
    from dialogs.session import DialogSession

BeginHandler = Callable[["DialogSession", Intent], Awaitable[None]]
ResumeHandler = Callable[["DialogSession", DialogFrame, str], Awaitable[None]]


@dataclass
class Dialog:
    name: str
    begin: BeginHandler
    resume: Optional[ResumeHandler] = None
    intents: list[str] = field(default_factory=list)     # recognizer intents that start it
    requires_auth: bool = False                          # needs stored credentials
    requires_calendar: bool = False                      # needs calendarId (implies auth)
    description: str = ""


@dataclass
class DialogLibrary:
    """A named, composable bundle of dialogs."""
    name: str
    dialogs: list[Dialog] = field(default_factory=list)

    def dialog(self, dialog: Dialog) -> "DialogLibrary":
        self.dialogs.append(dialog)
        return self

    @property
    def dialog_names(self) -> list[str]:
        return [d.name for d in self.dialogs]
