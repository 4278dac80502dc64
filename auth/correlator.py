"""
External Callback Correlator — maps an OAuth redirect back to its conversation.

The redirect arrives on a different transport, with nothing but the opaque
`state` token to identify the conversation. Resolution:

  1. Claim the token under the token lock: unknown, consumed, revoked or
     expired tokens are rejected and nothing resumes. A valid token is
     marked consumed before any network I/O, so a duplicate delivery of
     the same redirect is rejected rather than resumed twice.
  2. Exchange the provider payload for credentials. Failure abandons the
     attempt without writing anything to the conversation.
  3. In one conversation transaction: store credentials and take the
     continuation. Both happen or neither does.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Callable

from auth.resolver import ContinuationResolver
from backend.oauth import OAuthProvider
from core.errors import InvalidOrExpiredToken, ProviderExchangeFailure
from database.store_base import BaseConversationStore
from dialogs.session import CREDENTIALS
from models.schemas import (
    AuthState, CallbackOutcome, CallbackResult, CorrelationToken, TokenStatus, utcnow,
)

logger = structlog.get_logger()


class CallbackCorrelator:

    def __init__(
        self,
        store: BaseConversationStore,
        resolver: ContinuationResolver,
        provider: OAuthProvider,
        clock: Callable[[], datetime] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.provider = provider
        self.clock = clock or resolver.clock or utcnow

    async def on_callback(self, token: str, provider_payload: dict[str, Any]) -> CallbackResult:
        try:
            record = await self._claim(token)
        except InvalidOrExpiredToken as e:
            logger.warning("callback_rejected", reason=e.reason, token=(token or "")[:8])
            if e.reason == "expired" and e.address:
                await self.resolver.abandon(e.address, token, reason="expired")
            return CallbackResult(outcome=CallbackOutcome.REJECTED, reason=e.reason, address=e.address)

        try:
            credentials = await self.provider.exchange_code(provider_payload)
        except ProviderExchangeFailure as e:
            logger.warning("provider_exchange_failed",
                           address=record.address, token=record.short, error=str(e))
            await self.resolver.abandon(record.address, token, reason="exchange_failed")
            return CallbackResult(
                outcome=CallbackOutcome.REJECTED, reason="exchange_failed", address=record.address,
            )

        async with self.store.transaction(record.address) as conversation:
            continuation = self.resolver.take(conversation, token)
            if continuation is not None:
                conversation.private_data[CREDENTIALS] = credentials.model_dump(mode="json")

        if continuation is None:
            logger.warning("callback_superseded", address=record.address, token=record.short)
            return CallbackResult(
                outcome=CallbackOutcome.REJECTED, reason="superseded", address=record.address,
            )

        logger.info("callback_resumed",
                    address=record.address,
                    auth_state=AuthState.RESUMED.value,
                    follow_up=continuation.follow_up_dialog,
                    token=record.short)
        return CallbackResult(
            outcome=CallbackOutcome.RESUMED,
            address=record.address,
            continuation=continuation,
        )

    async def _claim(self, token: str) -> CorrelationToken:
        if not token:
            raise InvalidOrExpiredToken("unknown")

        async with self.store.token_lock:
            record = await self.store.get_token(token)
            if record is None:
                raise InvalidOrExpiredToken("unknown")
            if record.status == TokenStatus.CONSUMED:
                raise InvalidOrExpiredToken("consumed", record.address)
            if record.status == TokenStatus.REVOKED:
                raise InvalidOrExpiredToken("revoked", record.address)

            now = self.clock()
            if record.status == TokenStatus.EXPIRED or record.is_expired(now):
                if record.status == TokenStatus.ISSUED:
                    record.status = TokenStatus.EXPIRED
                    await self.store.save_token(record)
                raise InvalidOrExpiredToken("expired", record.address)

            record.status = TokenStatus.CONSUMED
            record.consumed_at = now
            await self.store.save_token(record)
            return record
