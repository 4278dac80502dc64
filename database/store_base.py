"""
Abstract Conversation State Store — Interface for all storage backends.

Implementations:
  - SqlConversationStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryConversationStore (dict-based, single-process, no persistence)
  - FileConversationStore     (JSON files on disk, single-process, durable)

Every mutation of a conversation goes through `transaction(address)`,
which holds that conversation's lock for the whole read-modify-write.
Chat turns and OAuth callbacks for the same address therefore serialize,
while different addresses proceed in parallel.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from models.schemas import Conversation, CorrelationToken, TokenStatus, utcnow


class _Missing:
    """Sentinel for an absent key. A stored None is a real value."""

    _instance: Optional["_Missing"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "MISSING"


MISSING: Any = _Missing()


class _AddressLock:
    """A conversation lock plus the number of tasks holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class BaseConversationStore(ABC):
    """Interface that all conversation store backends must implement."""

    def __init__(self):
        self._locks: dict[str, _AddressLock] = {}
        self._token_lock = asyncio.Lock()

    # ── Backend primitives ────────────────────────────────────

    @abstractmethod
    async def _read(self, address: str) -> Optional[Conversation]:
        """Return a detached copy of the stored conversation."""
        ...

    @abstractmethod
    async def _write(self, conversation: Conversation) -> None:
        ...

    @abstractmethod
    async def save_token(self, token: CorrelationToken) -> None:
        ...

    @abstractmethod
    async def get_token(self, token: str) -> Optional[CorrelationToken]:
        ...

    @abstractmethod
    async def list_tokens(self, status: TokenStatus = None) -> list[CorrelationToken]:
        ...

    @abstractmethod
    async def purge_tokens(self, before: datetime) -> int:
        """Delete non-issued tokens whose expiry is earlier than `before`; return how many."""
        ...

    # ── Locking ───────────────────────────────────────────────

    @asynccontextmanager
    async def locked(self, address: str) -> AsyncIterator[None]:
        """Hold the conversation's lock. The entry is dropped once nobody holds or awaits it."""
        entry = self._locks.get(address)
        if entry is None:
            entry = self._locks[address] = _AddressLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[address]

    @property
    def token_lock(self) -> asyncio.Lock:
        """Guards check-and-set on correlation tokens."""
        return self._token_lock

    # ── Conversations ─────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self, address: str, create: bool = False) -> AsyncIterator[Conversation]:
        """
        Yield a private copy of the conversation under its lock.

        The copy is written back only when the block exits normally and the
        conversation changed; an exception discards every change.
        """
        async with self.locked(address):
            existing = await self._read(address)
            if existing is None:
                if not create:
                    raise KeyError(address)
                conversation = Conversation(address=address)
            else:
                conversation = existing
            snapshot = conversation.model_copy(deep=True)

            yield conversation

            if existing is None or conversation != snapshot:
                conversation.updated_at = utcnow()
                await self._write(conversation)

    async def load(self, address: str) -> Optional[Conversation]:
        async with self.locked(address):
            return await self._read(address)

    async def exists(self, address: str) -> bool:
        return await self.load(address) is not None

    # ── Per-conversation key/value ────────────────────────────

    async def get(self, address: str, key: str, default: Any = MISSING) -> Any:
        conversation = await self.load(address)
        if conversation is None:
            return default
        return conversation.private_data.get(key, default)

    async def set(self, address: str, key: str, value: Any) -> None:
        async with self.transaction(address, create=True) as conversation:
            conversation.private_data[key] = value

    async def delete(self, address: str, key: str) -> bool:
        if not await self.exists(address):
            return False
        async with self.transaction(address) as conversation:
            return conversation.private_data.pop(key, MISSING) is not MISSING

    # ── Lifecycle ─────────────────────────────────────────────

    async def close(self) -> None:
        """Release backend resources. No-op for in-process backends."""
