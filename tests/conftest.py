"""Shared test fixtures for the calendar assistant."""
import pytest
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from backend.calendar import CalendarClient, CalendarEvent, CalendarInfo
from backend.oauth import OAuthProvider
from channels.chat_adapter import ChatAdapter
from config.settings import Settings
from core.dispatcher import build_runtime
from core.errors import CalendarProviderError, ProviderExchangeFailure, RecognitionFailure
from core.recognizer import KeywordRecognizer
from database.store_memory import InMemoryConversationStore
from models.schemas import OAuthCredentials


START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock: call it for 'now', advance() to move time."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeOAuthProvider(OAuthProvider):
    """Accepts code=good-*; anything else (or error=...) fails the exchange."""

    def __init__(self):
        self.exchanges: list[dict[str, Any]] = []

    def authorization_url(self, state: str) -> str:
        return f"https://login.example.test/authorize?state={state}"

    async def exchange_code(self, payload: dict[str, Any]) -> OAuthCredentials:
        self.exchanges.append(dict(payload))
        if payload.get("error"):
            raise ProviderExchangeFailure(f"Login was not completed: {payload['error']}")
        code = payload.get("code", "")
        if not code.startswith("good"):
            raise ProviderExchangeFailure("Token endpoint returned 400")
        return OAuthCredentials(access_token=f"access-{code}", refresh_token="refresh-1")


class InMemoryCalendar(CalendarClient):
    """Calendar provider double holding events per calendar id."""

    def __init__(self, calendar_id: str = "alice@example.test", summary: str = "Alice"):
        self.info = CalendarInfo(id=calendar_id, summary=summary, time_zone="UTC")
        self.events: dict[str, CalendarEvent] = {}
        self.calls: list[str] = []
        self.fail_next = False

    def _call(self, name: str, credentials: OAuthCredentials) -> None:
        self.calls.append(name)
        assert credentials is not None and credentials.access_token
        if self.fail_next:
            self.fail_next = False
            raise CalendarProviderError("Calendar provider returned 503", status_code=503)

    def add(self, title: str, start: datetime, hours: int = 1) -> CalendarEvent:
        event = CalendarEvent(id=uuid.uuid4().hex[:8], title=title, start=start,
                              end=start + timedelta(hours=hours))
        self.events[event.id] = event
        return event

    async def get_primary_calendar(self, credentials):
        self._call("get_primary_calendar", credentials)
        return self.info

    async def list_events(self, credentials, calendar_id, start, end, query=""):
        self._call("list_events", credentials)
        return sorted(
            (e for e in self.events.values() if e.start < end and e.end > start),
            key=lambda e: e.start,
        )

    async def create_event(self, credentials, calendar_id, title, start, end):
        self._call("create_event", credentials)
        event = CalendarEvent(id=uuid.uuid4().hex[:8], title=title, start=start, end=end)
        self.events[event.id] = event
        return event

    async def update_event(self, credentials, calendar_id, event_id, start=None, end=None, title=None):
        self._call("update_event", credentials)
        event = self.events[event_id]
        updated = event.model_copy(update={
            "start": start or event.start, "end": end or event.end, "title": title or event.title,
        })
        self.events[event_id] = updated
        return updated

    async def delete_event(self, credentials, calendar_id, event_id):
        self._call("delete_event", credentials)
        self.events.pop(event_id)

    async def free_busy(self, credentials, calendar_id, start, end):
        self._call("free_busy", credentials)
        return [
            (e.start, e.end) for e in sorted(self.events.values(), key=lambda e: e.start)
            if e.start < end and e.end > start
        ]


class ScriptedRecognizer(KeywordRecognizer):
    """Keyword recognizer whose result can be overridden per utterance."""

    def __init__(self):
        super().__init__()
        self.scripted: dict[str, list] = {}
        self.failing = False

    async def recognize(self, utterance: str):
        if self.failing:
            raise RecognitionFailure("Recognizer unavailable", utterance)
        if utterance in self.scripted:
            return [i.model_copy(deep=True) for i in self.scripted[utterance]]
        return await super().recognize(utterance)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()


@pytest.fixture
def calendar() -> InMemoryCalendar:
    return InMemoryCalendar()


@pytest.fixture
def recognizer() -> ScriptedRecognizer:
    return ScriptedRecognizer()


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def runtime(store, recognizer, provider, calendar, clock):
    return build_runtime(
        settings=Settings(),
        store=store,
        recognizer=recognizer,
        provider=provider,
        calendar=calendar,
        channel=ChatAdapter(),
        clock=clock,
    )


@pytest.fixture
def dispatcher(runtime):
    return runtime.dispatcher


def state_from(url: str) -> str:
    """Pull the correlation token back out of an authorization URL."""
    return url.rsplit("state=", 1)[1]


@pytest.fixture
def sign_in(dispatcher):
    """Complete a full login for an address; returns the callback result."""

    async def _sign_in(address: str, code: str = "good-1"):
        turn = await dispatcher.handle_message(address, "login")
        assert turn.auth_url
        return await dispatcher.handle_callback(state_from(turn.auth_url), {"code": code})

    return _sign_in
