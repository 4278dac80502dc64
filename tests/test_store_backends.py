"""
Tests for all conversation store backends.

Covers:
  - InMemoryConversationStore
  - FileConversationStore (JSON file persistence)
  - SqlConversationStore (via SQLite for test portability)
  - Store factory
  - Database URL translation
"""
import asyncio
import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from database.store_base import MISSING
from models.schemas import CorrelationToken, DialogFrame, TokenStatus


NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def make_token(token="tok-1", address="user-a", minutes=15):
    return CorrelationToken(token=token, address=address, created_at=NOW,
                            expires_at=NOW + timedelta(minutes=minutes))


class StoreContract:
    """Behaviour every backend must share. Subclasses provide a `store` fixture."""

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_sentinel(self, store):
        assert await store.get("user-a", "calendarId") is MISSING

    @pytest.mark.asyncio
    async def test_stored_none_is_not_missing(self, store):
        await store.set("user-a", "calendarId", None)
        value = await store.get("user-a", "calendarId")
        assert value is None
        assert value is not MISSING

    @pytest.mark.asyncio
    async def test_set_get_delete(self, store):
        await store.set("user-a", "calendarId", "primary@example.test")
        assert await store.get("user-a", "calendarId") == "primary@example.test"
        assert await store.delete("user-a", "calendarId") is True
        assert await store.delete("user-a", "calendarId") is False
        assert await store.get("user-a", "calendarId") is MISSING

    @pytest.mark.asyncio
    async def test_addresses_are_isolated(self, store):
        await store.set("user-a", "calendarId", "a-cal")
        await store.set("user-b", "calendarId", "b-cal")
        assert await store.get("user-a", "calendarId") == "a-cal"
        assert await store.get("user-b", "calendarId") == "b-cal"

    @pytest.mark.asyncio
    async def test_transaction_requires_existing_unless_create(self, store):
        with pytest.raises(KeyError):
            async with store.transaction("nobody"):
                pass
        async with store.transaction("nobody", create=True) as conversation:
            assert conversation.address == "nobody"
        assert await store.exists("nobody")

    @pytest.mark.asyncio
    async def test_transaction_commits_stack_and_data_together(self, store):
        async with store.transaction("user-a", create=True) as conversation:
            conversation.dialog_stack.append(DialogFrame(dialog="addEntry", step="title",
                                                         awaiting_input=True))
            conversation.private_data["calendarId"] = "a-cal"

        loaded = await store.load("user-a")
        assert loaded.private_data == {"calendarId": "a-cal"}
        assert loaded.dialog_stack[0].dialog == "addEntry"
        assert loaded.dialog_stack[0].awaiting_input is True

    @pytest.mark.asyncio
    async def test_exception_discards_every_change(self, store):
        await store.set("user-a", "calendarId", "a-cal")
        with pytest.raises(RuntimeError):
            async with store.transaction("user-a") as conversation:
                conversation.private_data["calendarId"] = "changed"
                conversation.dialog_stack.append(DialogFrame(dialog="help"))
                raise RuntimeError("boom")

        loaded = await store.load("user-a")
        assert loaded.private_data["calendarId"] == "a-cal"
        assert loaded.dialog_stack == []

    @pytest.mark.asyncio
    async def test_load_returns_detached_copy(self, store):
        await store.set("user-a", "calendarId", "a-cal")
        copy = await store.load("user-a")
        copy.private_data["calendarId"] = "mutated"
        assert await store.get("user-a", "calendarId") == "a-cal"

    @pytest.mark.asyncio
    async def test_same_address_transactions_serialize(self, store):
        await store.set("user-a", "counter", 0)

        async def bump():
            async with store.transaction("user-a") as conversation:
                value = conversation.private_data["counter"]
                await asyncio.sleep(0)
                conversation.private_data["counter"] = value + 1

        await asyncio.gather(*(bump() for _ in range(10)))
        assert await store.get("user-a", "counter") == 10

    @pytest.mark.asyncio
    async def test_token_save_get_list(self, store):
        await store.save_token(make_token("tok-1"))
        await store.save_token(make_token("tok-2"))
        consumed = make_token("tok-2")
        consumed.status = TokenStatus.CONSUMED
        consumed.consumed_at = NOW
        await store.save_token(consumed)

        record = await store.get_token("tok-1")
        assert record.address == "user-a"
        assert record.expires_at == NOW + timedelta(minutes=15)
        assert await store.get_token("nope") is None
        assert [t.token for t in await store.list_tokens(TokenStatus.ISSUED)] == ["tok-1"]
        assert len(await store.list_tokens()) == 2

    @pytest.mark.asyncio
    async def test_purge_removes_only_old_finished_tokens(self, store):
        await store.save_token(make_token("issued-late", minutes=-30))
        old = make_token("old-consumed", minutes=-30)
        old.status = TokenStatus.CONSUMED
        old.consumed_at = NOW
        await store.save_token(old)
        recent = make_token("recent-revoked", minutes=15)
        recent.status = TokenStatus.REVOKED
        await store.save_token(recent)

        assert await store.purge_tokens(before=NOW) == 1

        assert await store.get_token("old-consumed") is None
        assert {t.token for t in await store.list_tokens()} == {"issued-late", "recent-revoked"}
        assert await store.purge_tokens(before=NOW) == 0

    @pytest.mark.asyncio
    async def test_address_locks_are_released(self, store):
        async def bump():
            async with store.transaction("user-a", create=True) as conversation:
                await asyncio.sleep(0)
                conversation.private_data["n"] = conversation.private_data.get("n", 0) + 1

        await asyncio.gather(*(bump() for _ in range(5)))
        with pytest.raises(RuntimeError):
            async with store.transaction("user-b", create=True):
                raise RuntimeError("boom")
        await store.load("user-c")

        assert await store.get("user-a", "n") == 5
        assert store._locks == {}


# ──────────────────────────────────────────────────────────────
#  InMemoryConversationStore
# ──────────────────────────────────────────────────────────────

class TestInMemoryConversationStore(StoreContract):
    @pytest.fixture
    def store(self):
        from database.store_memory import InMemoryConversationStore
        return InMemoryConversationStore()

    @pytest.mark.asyncio
    async def test_unchanged_transaction_does_not_write(self, store):
        await store.set("user-a", "calendarId", "a-cal")
        before = (await store.load("user-a")).updated_at
        async with store.transaction("user-a"):
            pass
        assert (await store.load("user-a")).updated_at == before

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.set("user-a", "calendarId", "a-cal")
        await store.save_token(make_token())
        assert store.stats() == {"conversations": 1, "tokens": 1, "pending_continuations": 0}


# ──────────────────────────────────────────────────────────────
#  FileConversationStore
# ──────────────────────────────────────────────────────────────

class TestFileConversationStore(StoreContract):
    @pytest.fixture
    def data_dir(self):
        d = tempfile.mkdtemp(prefix="calendar_bot_test_")
        yield d
        shutil.rmtree(d, ignore_errors=True)

    @pytest.fixture
    def store(self, data_dir):
        from database.store_file import FileConversationStore
        return FileConversationStore(data_dir=data_dir)

    @pytest.mark.asyncio
    async def test_persistence_round_trip(self, data_dir):
        from database.store_file import FileConversationStore

        store1 = FileConversationStore(data_dir=data_dir)
        await store1.set("user-a", "calendarId", "a-cal")
        await store1.save_token(make_token())

        assert os.path.exists(os.path.join(data_dir, "conversations.json"))
        assert os.path.exists(os.path.join(data_dir, "tokens.json"))

        store2 = FileConversationStore(data_dir=data_dir)
        assert await store2.get("user-a", "calendarId") == "a-cal"
        record = await store2.get_token("tok-1")
        assert record.status == TokenStatus.ISSUED
        assert record.expires_at == NOW + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_purge_is_flushed_to_disk(self, data_dir):
        from database.store_file import FileConversationStore

        store1 = FileConversationStore(data_dir=data_dir)
        finished = make_token("tok-done", minutes=-30)
        finished.status = TokenStatus.EXPIRED
        await store1.save_token(finished)
        await store1.save_token(make_token("tok-live"))
        assert await store1.purge_tokens(before=NOW) == 1

        with open(os.path.join(data_dir, "tokens.json")) as f:
            assert list(json.load(f)) == ["tok-live"]
        store2 = FileConversationStore(data_dir=data_dir)
        assert await store2.get_token("tok-done") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_is_skipped(self, data_dir):
        from database.store_file import FileConversationStore
        with open(os.path.join(data_dir, "conversations.json"), "w") as f:
            f.write("{not json")
        store = FileConversationStore(data_dir=data_dir)
        assert await store.load("user-a") is None


# ──────────────────────────────────────────────────────────────
#  SqlConversationStore (SQLite)
# ──────────────────────────────────────────────────────────────

class TestSqlConversationStore(StoreContract):
    @pytest_asyncio.fixture
    async def store(self, tmp_path):
        from database.store import SqlConversationStore
        store = SqlConversationStore(f"sqlite:///{tmp_path / 'bot.db'}")
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_datetimes_come_back_timezone_aware(self, store):
        await store.save_token(make_token())
        record = await store.get_token("tok-1")
        assert record.expires_at.tzinfo is not None
        assert not record.is_expired(NOW)


# ──────────────────────────────────────────────────────────────
#  Store Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def setup_method(self):
        from database.store_factory import reset_store
        reset_store()

    def teardown_method(self):
        from database.store_factory import reset_store
        reset_store()

    def test_create_memory_store(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryConversationStore
        store = create_store({"store_backend": "memory"})
        assert isinstance(store, InMemoryConversationStore)

    def test_create_file_store(self):
        from database.store_factory import create_store
        from database.store_file import FileConversationStore
        d = tempfile.mkdtemp(prefix="calendar_bot_factory_")
        try:
            store = create_store({"store_backend": "file", "store_file_dir": d})
            assert isinstance(store, FileConversationStore)
        finally:
            shutil.rmtree(d, ignore_errors=True)

    def test_create_sql_store(self, tmp_path):
        from database.store_factory import create_store
        from database.store import SqlConversationStore
        store = create_store({"store_backend": "sql", "url": f"sqlite:///{tmp_path / 'f.db'}"})
        assert isinstance(store, SqlConversationStore)

    def test_accepts_database_config(self):
        from config.settings import DatabaseConfig
        from database.store_factory import create_store
        from database.store_memory import InMemoryConversationStore
        assert isinstance(create_store(DatabaseConfig()), InMemoryConversationStore)

    def test_unknown_backend_falls_back_to_memory(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryConversationStore
        assert isinstance(create_store({"store_backend": "redis"}), InMemoryConversationStore)

    def test_each_create_is_a_new_store(self):
        from database.store_factory import create_store
        assert create_store({}) is not create_store({})

    def test_get_store_is_singleton(self):
        from database.store_factory import get_store
        assert get_store() is get_store()


# ──────────────────────────────────────────────────────────────
#  Database Session: URL Translation
# ──────────────────────────────────────────────────────────────

class TestSessionUrlTranslation:
    def test_postgresql_url(self):
        from database.session import _to_async_url
        assert _to_async_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_postgres_url(self):
        from database.session import _to_async_url
        assert _to_async_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_mysql_url(self):
        from database.session import _to_async_url
        assert _to_async_url("mysql://u:p@h/db") == "mysql+aiomysql://u:p@h/db"

    def test_sqlite_url(self):
        from database.session import _to_async_url
        assert _to_async_url("sqlite:///./test.db") == "sqlite+aiosqlite:///./test.db"

    def test_already_async_url(self):
        from database.session import _to_async_url
        url = "postgresql+asyncpg://u:p@h/db"
        assert _to_async_url(url) == url
