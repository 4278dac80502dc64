"""
InMemoryConversationStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlConversationStore
  - Copies on read and write, so an aborted transaction leaves no trace
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Optional

from database.store_base import BaseConversationStore
from models.schemas import Conversation, CorrelationToken, TokenStatus

logger = structlog.get_logger()


class InMemoryConversationStore(BaseConversationStore):
    """
    Full-featured in-memory store with the same interface as SqlConversationStore.
    """

    def __init__(self):
        super().__init__()
        self._conversations: dict[str, Conversation] = {}   # address → conversation
        self._tokens: dict[str, CorrelationToken] = {}       # token → record
        logger.info("inmemory_store_initialized")

    # ── Conversations ─────────────────────────────────────

    async def _read(self, address: str) -> Optional[Conversation]:
        conversation = self._conversations.get(address)
        return conversation.model_copy(deep=True) if conversation else None

    async def _write(self, conversation: Conversation) -> None:
        self._conversations[conversation.address] = conversation.model_copy(deep=True)

    # ── Tokens ────────────────────────────────────────────

    async def save_token(self, token: CorrelationToken) -> None:
        self._tokens[token.token] = token.model_copy()

    async def get_token(self, token: str) -> Optional[CorrelationToken]:
        record = self._tokens.get(token)
        return record.model_copy() if record else None

    async def list_tokens(self, status: TokenStatus = None) -> list[CorrelationToken]:
        return [
            t.model_copy() for t in self._tokens.values()
            if status is None or t.status == status
        ]

    async def purge_tokens(self, before: datetime) -> int:
        finished = [
            key for key, t in self._tokens.items()
            if t.status != TokenStatus.ISSUED and t.expires_at < before
        ]
        for key in finished:
            del self._tokens[key]
        return len(finished)

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "conversations": len(self._conversations),
            "tokens": len(self._tokens),
            "pending_continuations": sum(
                1 for c in self._conversations.values() if c.pending_continuation
            ),
        }
