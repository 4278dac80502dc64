"""
Deferred Continuation Resolver — decides what runs after the user logs in.

Per authentication attempt:

  NeedsAuth         a gated dialog found no calendarId / credentials
  Redirecting       continuation computed and stored, token minted,
                    provider URL handed back to the user
  AwaitingCallback  conversation stays fully interactive meanwhile
  Resumed           correlator consumed the continuation; the dispatcher
                    runs follow_up_dialog with follow_up_args
  Abandoned         token expired or login failed; continuation dropped

The conversation has a single continuation slot. A newer request replaces
the older one and revokes its token, so a stale follow-up can never fire.
Token rows are written only after the conversation commits; a turn that
fails to commit leaves the previous login link working.

Finished tokens (consumed, revoked, expired) are kept for one more TTL so
replays are reported precisely, then purged by the sweep.
"""
from __future__ import annotations

import secrets
import structlog
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from backend.oauth import OAuthProvider
from core.entities import ActionValue, EntityType, synthesize_intent, wrap_entity
from database.store_base import BaseConversationStore
from dialogs.primary_calendar import PRIMARY_CALENDAR_DIALOG, PRIMARY_CALENDAR_INTENT
from dialogs.registry import DialogRegistry
from models.schemas import (
    AuthState, Conversation, CorrelationToken, Intent, PendingContinuation,
    TokenStatus, utcnow,
)

if TYPE_CHECKING:
    from dialogs.session import DialogSession

logger = structlog.get_logger()

DEFAULT_TOKEN_TTL_SECONDS = 900


class ContinuationResolver:

    def __init__(
        self,
        store: BaseConversationStore,
        registry: DialogRegistry,
        provider: OAuthProvider,
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        default_follow_up: str = PRIMARY_CALENDAR_DIALOG,
    ):
        self.store = store
        self.registry = registry
        self.provider = provider
        self.token_ttl = timedelta(seconds=token_ttl_seconds)
        self.clock = clock
        self.default_follow_up = default_follow_up

    # ── NeedsAuth → Redirecting ───────────────────────

    def resolve_post_login(
        self, follow_up_dialog: Optional[str], follow_up_args: Optional[Intent],
    ) -> tuple[str, Intent]:
        """Explicit follow-up wins; otherwise select the primary calendar (Action=set)."""
        if follow_up_dialog:
            return follow_up_dialog, follow_up_args or Intent(name=follow_up_dialog, score=1.0)
        return self.default_follow_up, synthesize_intent(
            PRIMARY_CALENDAR_INTENT, wrap_entity(EntityType.ACTION, ActionValue.SET),
        )

    async def request_auth(
        self,
        session: "DialogSession",
        follow_up_dialog: str = None,
        follow_up_args: Intent = None,
    ) -> str:
        """
        Record the continuation on the session's conversation and return the
        provider authorization URL. Must run inside the conversation's
        transaction; the token row is saved from `session.committed()`.
        """
        conversation = session.conversation
        dialog_name, args = self.resolve_post_login(follow_up_dialog, follow_up_args)
        self.registry.resolve(dialog_name)          # UnknownDialogError is a programming error

        now = self.clock()
        record = CorrelationToken(
            token=secrets.token_urlsafe(32),
            address=conversation.address,
            created_at=now,
            expires_at=now + self.token_ttl,
        )

        previous = conversation.pending_continuation
        previous_token = previous.token if previous is not None else None
        session.on_commit(lambda: self._issue(record, previous_token))

        conversation.pending_continuation = PendingContinuation(
            follow_up_dialog=dialog_name,
            follow_up_args=args.model_copy(deep=True),
            token=record.token,
            created_at=now,
            expires_at=record.expires_at,
        )

        if previous is not None:
            logger.info("continuation_replaced",
                        address=conversation.address,
                        previous_follow_up=previous.follow_up_dialog,
                        follow_up=dialog_name)
        logger.info("auth_redirecting",
                    address=conversation.address,
                    auth_state=AuthState.REDIRECTING.value,
                    follow_up=dialog_name,
                    token=record.short,
                    expires_at=record.expires_at.isoformat())
        return self.provider.authorization_url(record.token)

    async def _issue(self, record: CorrelationToken, previous_token: Optional[str]) -> None:
        """Persist a minted token once its continuation is committed, revoking the one it replaced."""
        async with self.store.token_lock:
            if previous_token is not None:
                await self._revoke(previous_token)
            await self.store.save_token(record)

    async def _revoke(self, token: str) -> None:
        existing = await self.store.get_token(token)
        if existing is not None and existing.status == TokenStatus.ISSUED:
            existing.status = TokenStatus.REVOKED
            await self.store.save_token(existing)

    # ── AwaitingCallback → Resumed / Abandoned ────────

    def take(self, conversation: Conversation, token: str) -> Optional[PendingContinuation]:
        """Remove and return the continuation bound to `token`, if it is still the current one."""
        pending = conversation.pending_continuation
        if pending is None or pending.token != token:
            return None
        conversation.pending_continuation = None
        return pending

    async def abandon(self, address: str, token: str, reason: str) -> bool:
        """Drop the continuation bound to `token`. No dialog resumes."""
        if not await self.store.exists(address):
            return False
        async with self.store.transaction(address) as conversation:
            pending = conversation.pending_continuation
            if pending is None or pending.token != token:
                return False
            conversation.pending_continuation = None
        logger.info("auth_abandoned",
                    address=address,
                    auth_state=AuthState.ABANDONED.value,
                    follow_up=pending.follow_up_dialog,
                    reason=reason)
        return True

    def discard_if_expired(self, conversation: Conversation) -> bool:
        """Lazy expiry on ordinary chat turns; runs inside the caller's transaction."""
        pending = conversation.pending_continuation
        if pending is None or not pending.is_expired(self.clock()):
            return False
        conversation.pending_continuation = None
        logger.info("auth_abandoned",
                    address=conversation.address,
                    auth_state=AuthState.ABANDONED.value,
                    follow_up=pending.follow_up_dialog,
                    reason="expired")
        return True

    async def sweep_expired(self) -> int:
        """
        Expire issued tokens past their window and abandon their continuations,
        then purge finished tokens whose window closed more than one TTL ago.
        Returns the number of tokens expired by this sweep.
        """
        now = self.clock()
        expired: list[CorrelationToken] = []
        async with self.store.token_lock:
            for record in await self.store.list_tokens(TokenStatus.ISSUED):
                if record.is_expired(now):
                    record.status = TokenStatus.EXPIRED
                    await self.store.save_token(record)
                    expired.append(record)
            purged = await self.store.purge_tokens(before=now - self.token_ttl)

        for record in expired:
            await self.abandon(record.address, record.token, reason="expired")
        if expired:
            logger.info("expired_tokens_swept", count=len(expired))
        if purged:
            logger.info("finished_tokens_purged", count=purged)
        return len(expired)

    def auth_state(self, conversation: Conversation) -> Optional[AuthState]:
        pending = conversation.pending_continuation
        if pending is None:
            return None
        if pending.is_expired(self.clock()):
            return AuthState.ABANDONED
        return AuthState.AWAITING_CALLBACK
