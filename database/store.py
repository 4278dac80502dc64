"""
SqlConversationStore — Portable SQL persistence for PostgreSQL, MySQL, SQLite.

Conversations are one JSON document per address. Locks are in-process, so
one worker process owns a database; the rows survive restarts.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select

from database.models import ConversationRow, CorrelationTokenRow
from database.session import (
    create_engine_for, create_session_factory, init_db, session_scope,
)
from database.store_base import BaseConversationStore
from models.schemas import Conversation, CorrelationToken, TokenStatus

logger = structlog.get_logger()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlConversationStore(BaseConversationStore):
    """
    Persistent conversation store backed by any SQLAlchemy-supported database.
    Tables are created lazily on first use.
    """

    def __init__(self, url: str, debug: bool = False):
        super().__init__()
        self._engine = create_engine_for(url, debug=debug)
        self._factory = create_session_factory(self._engine)
        self._ready = False
        self._init_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._ready:
            return
        async with self._init_lock:
            if not self._ready:
                await init_db(self._engine)
                self._ready = True

    # ── Conversations ─────────────────────────────────────

    async def _read(self, address: str) -> Optional[Conversation]:
        await self._ensure_schema()
        async with session_scope(self._factory) as db:
            row = await db.get(ConversationRow, address)
            return Conversation.model_validate(row.to_dict()) if row else None

    async def _write(self, conversation: Conversation) -> None:
        await self._ensure_schema()
        document = conversation.model_dump(mode="json")
        async with session_scope(self._factory) as db:
            row = await db.get(ConversationRow, conversation.address)
            if row:
                row.document = document
                row.updated_at = conversation.updated_at
            else:
                db.add(ConversationRow(
                    address=conversation.address,
                    document=document,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                ))

    # ── Tokens ────────────────────────────────────────────

    async def save_token(self, token: CorrelationToken) -> None:
        await self._ensure_schema()
        async with session_scope(self._factory) as db:
            row = await db.get(CorrelationTokenRow, token.token)
            if row:
                row.status = token.status.value
                row.consumed_at = token.consumed_at
                row.expires_at = token.expires_at
            else:
                db.add(CorrelationTokenRow(
                    token=token.token,
                    address=token.address,
                    status=token.status.value,
                    created_at=token.created_at,
                    expires_at=token.expires_at,
                    consumed_at=token.consumed_at,
                ))

    async def get_token(self, token: str) -> Optional[CorrelationToken]:
        await self._ensure_schema()
        async with session_scope(self._factory) as db:
            row = await db.get(CorrelationTokenRow, token)
            return self._row_to_token(row) if row else None

    async def list_tokens(self, status: TokenStatus = None) -> list[CorrelationToken]:
        await self._ensure_schema()
        async with session_scope(self._factory) as db:
            stmt = select(CorrelationTokenRow)
            if status is not None:
                stmt = stmt.where(CorrelationTokenRow.status == status.value)
            result = await db.execute(stmt)
            return [self._row_to_token(row) for row in result.scalars()]

    async def purge_tokens(self, before: datetime) -> int:
        await self._ensure_schema()
        async with session_scope(self._factory) as db:
            result = await db.execute(
                delete(CorrelationTokenRow)
                .where(CorrelationTokenRow.status != TokenStatus.ISSUED.value)
                .where(CorrelationTokenRow.expires_at < before)
            )
            return result.rowcount or 0

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("database_closed")

    # ── Helpers ───────────────────────────────────────────

    @staticmethod
    def _row_to_token(row: CorrelationTokenRow) -> CorrelationToken:
        data = row.to_dict()
        for key in ("created_at", "expires_at", "consumed_at"):
            data[key] = _aware(data[key])
        return CorrelationToken.model_validate(data)
