"""
Error taxonomy for the dispatch core.

RecognitionFailure      → fallback dialog, never fatal
UnknownDialogError      → fatal at registration, logged + fallback at dispatch
DuplicateDialogError    → fatal at startup
InvalidOrExpiredToken   → callback rejected, nothing resumed
ProviderExchangeFailure → attempt abandoned, no credential write
CalendarProviderError   → dialog apologises, conversation continues
"""
from __future__ import annotations


class CalendarBotError(Exception):
    """Base exception for the calendar assistant."""


class RecognitionFailure(CalendarBotError):
    def __init__(self, message: str, utterance: str = ""):
        self.utterance = utterance
        super().__init__(message)


class UnknownDialogError(CalendarBotError, LookupError):
    def __init__(self, dialog_name: str):
        self.dialog_name = dialog_name
        super().__init__(f"Dialog '{dialog_name}' is not registered")


class DuplicateDialogError(CalendarBotError, ValueError):
    def __init__(self, name: str, library: str, existing_library: str):
        self.name = name
        self.library = library
        self.existing_library = existing_library
        super().__init__(
            f"'{name}' from library '{library}' is already registered by '{existing_library}'"
        )


class InvalidOrExpiredToken(CalendarBotError):
    """reason: unknown | consumed | revoked | expired"""

    def __init__(self, reason: str, address: str = ""):
        self.reason = reason
        self.address = address
        super().__init__(f"Correlation token rejected: {reason}")


class ProviderExchangeFailure(CalendarBotError):
    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class CalendarProviderError(CalendarBotError):
    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)
