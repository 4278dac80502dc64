"""Calendar dialog behaviour, exercised through the dispatcher after a login."""
from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio

from dialogs.common import day_bounds, entity_range, pick_choice, to_datetime
from dialogs.session import CALENDAR_ID, CREDENTIALS
from models.schemas import Entity, Intent


ADDR = "chat:bob"


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def say(sign_in, dispatcher):
    await sign_in(ADDR)

    async def _say(text: str) -> list[str]:
        return (await dispatcher.handle_message(ADDR, text)).replies

    return _say


# ──────────────────────────────────────────────────────────────
#  Helpers
# ──────────────────────────────────────────────────────────────

class TestHelpers:
    def test_to_datetime_formats(self):
        assert to_datetime("2026-10-20 12:00:00") == at(20, 12)
        assert to_datetime("2026-10-20") == at(20, 0)
        assert to_datetime("2026-10-20T12:00:00+02:00") == at(20, 10)
        assert to_datetime(date(2026, 10, 20)) == at(20, 0)
        assert to_datetime("next tuesday") is None
        assert to_datetime(None) is None

    def test_pick_choice(self):
        assert pick_choice("2", 3) == 1
        assert pick_choice(" 1. ", 3) == 0
        assert pick_choice("4", 3) is None
        assert pick_choice("0", 3) is None
        assert pick_choice("the second", 3) is None

    def test_entity_range(self):
        intent = Intent(entities=[Entity(
            type="builtin.datetimeV2.datetimerange", value="tomorrow afternoon",
            normalized_value={"start": "2026-10-20 12:00:00", "end": "2026-10-20 16:00:00"},
        )])
        assert entity_range(intent) == (at(20, 12), at(20, 16))

    def test_inverted_range_is_ignored(self):
        intent = Intent(entities=[Entity(
            type="builtin.datetimeV2.datetimerange", value="x",
            normalized_value={"start": "2026-10-20 16:00:00", "end": "2026-10-20 12:00:00"},
        )])
        assert entity_range(intent) is None

    def test_day_bounds(self):
        assert day_bounds(date(2026, 10, 20)) == (at(20, 0), at(21, 0))


# ──────────────────────────────────────────────────────────────
#  addEntry
# ──────────────────────────────────────────────────────────────

class TestAddEntry:
    @pytest.mark.asyncio
    async def test_add(self, say, calendar):
        assert await say('add "Lunch with Ana" 2026-10-20 12:00') == [
            "Added 'Lunch with Ana' on Tue 20 Oct 2026 12:00.",
        ]
        [event] = calendar.events.values()
        assert event.end - event.start == timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_add_needs_a_time(self, say, calendar):
        replies = await say('add "Lunch"')
        assert replies[0].startswith("When should I add it?")
        assert calendar.events == {}

    @pytest.mark.asyncio
    async def test_quoted_title_answer(self, say, calendar):
        await say("add 2026-10-20 12:00")
        assert await say('"Dentist"') == ["Added 'Dentist' on Tue 20 Oct 2026 12:00."]


# ──────────────────────────────────────────────────────────────
#  removeEntry
# ──────────────────────────────────────────────────────────────

class TestRemoveEntry:
    @pytest.mark.asyncio
    async def test_single_match(self, say, calendar):
        calendar.add("Lunch", at(20, 12))
        assert await say('remove "lunch"') == ["Removed 'Lunch' (Tue 20 Oct 2026 12:00)."]
        assert calendar.events == {}

    @pytest.mark.asyncio
    async def test_ambiguous_match_asks(self, say, calendar, runtime):
        calendar.add("Lunch", at(20, 12))
        keep_id = next(iter(calendar.events))
        calendar.add("Lunch with Ana", at(21, 12))

        assert await say('remove "lunch"') == [
            "Which one should I remove?\n"
            "1. Lunch (Tue 20 Oct 2026 12:00)\n"
            "2. Lunch with Ana (Wed 21 Oct 2026 12:00)"
        ]
        assert await say("7") == ["Please answer with a number from 1 to 2."]
        assert (await runtime.store.load(ADDR)).active_frame.awaiting_input

        assert await say("2") == ["Removed 'Lunch with Ana' (Wed 21 Oct 2026 12:00)."]
        assert list(calendar.events) == [keep_id]
        assert (await runtime.store.load(ADDR)).dialog_stack == []

    @pytest.mark.asyncio
    async def test_by_day(self, say, calendar):
        calendar.add("Standup", at(22, 9))
        assert await say("delete 2026-10-22") == ["Removed 'Standup' (Thu 22 Oct 2026 09:00)."]

    @pytest.mark.asyncio
    async def test_no_match(self, say, calendar):
        calendar.add("Lunch", at(20, 12))
        assert await say('remove "Gym"') == ["I couldn't find a matching entry."]
        assert len(calendar.events) == 1

    @pytest.mark.asyncio
    async def test_needs_title_or_day(self, say):
        assert await say("remove") == ["Which entry? Give me its title in quotes, or its date."]


# ──────────────────────────────────────────────────────────────
#  editEntry
# ──────────────────────────────────────────────────────────────

class TestEditEntry:
    @pytest.mark.asyncio
    async def test_move_keeps_duration(self, say, calendar):
        event = calendar.add("Lunch", at(20, 12), hours=2)
        assert await say('move "Lunch" to 2026-10-21 13:00') == [
            "Moved 'Lunch' to Wed 21 Oct 2026 13:00.",
        ]
        moved = calendar.events[event.id]
        assert moved.start == at(21, 13)
        assert moved.end == at(21, 15)

    @pytest.mark.asyncio
    async def test_ambiguous_move(self, say, calendar):
        first = calendar.add("Lunch", at(20, 12))
        calendar.add("Lunch", at(23, 12))

        replies = await say('reschedule "Lunch" 2026-10-24 13:00')
        assert replies[0].startswith("Which one should I move?")
        assert await say("1") == ["Moved 'Lunch' to Sat 24 Oct 2026 13:00."]
        assert calendar.events[first.id].start == at(24, 13)

    @pytest.mark.asyncio
    async def test_unknown_entry(self, say):
        assert await say('move "Gym" to 2026-10-21 13:00') == ["I couldn't find 'Gym'."]

    @pytest.mark.asyncio
    async def test_needs_title_and_time(self, say):
        replies = await say('move "Lunch"')
        assert replies[0].startswith("Tell me the entry and the new time")


# ──────────────────────────────────────────────────────────────
#  checkAvailability / summarize
# ──────────────────────────────────────────────────────────────

class TestAvailability:
    @pytest.mark.asyncio
    async def test_free_slot(self, say, calendar):
        calendar.add("Lunch", at(20, 12))
        assert await say("am I free 2026-10-20 15:00") == [
            "You're free from Tue 20 Oct 2026 15:00 to Tue 20 Oct 2026 16:00.",
        ]

    @pytest.mark.asyncio
    async def test_busy_day(self, say, calendar):
        calendar.add("Lunch", at(20, 12))
        assert await say("am I free 2026-10-20") == [
            "You're busy during:\n- Tue 20 Oct 2026 12:00 to Tue 20 Oct 2026 13:00",
        ]

    @pytest.mark.asyncio
    async def test_needs_a_time(self, say):
        assert await say("am I free") == ["For when? e.g. am I free 2026-10-20 15:00"]


class TestSummarize:
    @pytest.mark.asyncio
    async def test_explicit_day(self, say, calendar):
        calendar.add("Lunch", at(20, 12))
        calendar.add("Standup", at(20, 9, 30))
        calendar.add("Other day", at(21, 9))
        assert await say("summarize 2026-10-20") == [
            "2 entries on Tue 20 Oct 2026:\n"
            "- Tue 20 Oct 2026 09:30 Standup\n"
            "- Tue 20 Oct 2026 12:00 Lunch"
        ]

    @pytest.mark.asyncio
    async def test_defaults_to_today(self, say):
        assert await say("agenda") == ["Nothing on your calendar for Mon 19 Oct 2026."]


# ──────────────────────────────────────────────────────────────
#  primaryCalendar / logout
# ──────────────────────────────────────────────────────────────

class TestAccount:
    @pytest.mark.asyncio
    async def test_which_calendar(self, say):
        assert await say("which calendar") == ["I'm using the calendar 'alice@example.test'."]

    @pytest.mark.asyncio
    async def test_reselect_primary(self, say, calendar):
        calendar.info = calendar.info.model_copy(update={"id": "work@example.test", "summary": "Work"})
        assert await say("use my primary calendar") == ["I'll use your calendar 'Work' from now on."]

    @pytest.mark.asyncio
    async def test_logout_then_gated_again(self, say, dispatcher, runtime):
        assert await say("logout") == ["You're signed out."]
        conversation = await runtime.store.load(ADDR)
        assert CREDENTIALS not in conversation.private_data
        assert CALENDAR_ID not in conversation.private_data

        turn = await dispatcher.handle_message(ADDR, "summarize 2026-10-20")
        assert turn.auth_url

    @pytest.mark.asyncio
    async def test_login_without_calendar_skips_provider(self, say, dispatcher, runtime, provider):
        await runtime.store.delete(ADDR, CALENDAR_ID)
        exchanges = len(provider.exchanges)

        turn = await dispatcher.handle_message(ADDR, "login")

        assert turn.auth_url == ""
        assert turn.replies == ["I'll use your calendar 'Alice' from now on."]
        assert await runtime.store.get(ADDR, CALENDAR_ID) == "alice@example.test"
        assert (await runtime.store.load(ADDR)).pending_continuation is None
        assert len(provider.exchanges) == exchanges
