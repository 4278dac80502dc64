"""
Dispatcher — the bot runtime. Routes chat turns and OAuth callbacks to dialogs.

Chat turn:
  1. Recognize the utterance (outside any lock; failure → fallback)
  2. Inside the conversation transaction:
     a. drop an expired pending continuation
     b. confident intent with a registered dialog → clear stack, start it
     c. else top frame awaiting input → continue it with the raw text
     d. else fallback dialog (help)
  3. Commit, write the correlation tokens the turn minted, then return /
     deliver the replies

Callback:
  1. Correlator validates the token, exchanges the code, stores credentials
     and hands back the continuation
  2. The follow-up runs through invoke_dialog, the same path a chat turn
     uses, inside its own transaction
  3. Replies go out through the chat channel (queued when offline)

Gates: a dialog declaring `requires_calendar` without a calendarId sends the
user to login with the default follow-up; `requires_auth` without
credentials sends them with this dialog and its arguments as the follow-up.
A callback-driven turn never mints a second redirect.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Any, Optional

from auth.correlator import CallbackCorrelator
from auth.resolver import ContinuationResolver
from backend.calendar import CalendarClient, GoogleCalendarClient
from backend.oauth import GoogleOAuthProvider, OAuthProvider
from channels.base import ChannelAdapter
from channels.chat_adapter import ChatAdapter
from config.settings import Settings, get_settings
from core.errors import CalendarProviderError, RecognitionFailure, UnknownDialogError
from core.recognizer import NONE_INTENT, IntentRecognizer, create_recognizer, select_intent
from database.store_base import BaseConversationStore
from database.store_factory import create_store
from dialogs import create_default_registry
from dialogs.account import (
    LOGIN_FAILED_MESSAGE, NEEDS_CALENDAR_MESSAGE, NEEDS_CREDENTIALS_MESSAGE,
    SIGNED_IN_MESSAGE, sign_in_message,
)
from dialogs.general import HELP_DIALOG
from dialogs.models import Dialog
from dialogs.registry import DialogRegistry
from dialogs.session import CALENDAR_ID, CREDENTIALS, DialogSession
from models.schemas import CallbackResult, DialogFrame, Intent, TurnResult

logger = structlog.get_logger()

PROVIDER_ERROR_MESSAGE = "Sorry, I couldn't reach your calendar just now. Please try again."


class Dispatcher:

    def __init__(
        self,
        store: BaseConversationStore,
        registry: DialogRegistry,
        recognizer: IntentRecognizer,
        resolver: ContinuationResolver,
        correlator: CallbackCorrelator,
        channel: ChannelAdapter = None,
        min_confidence: float = 0.5,
        fallback_dialog: str = HELP_DIALOG,
    ):
        self.store = store
        self.registry = registry
        self.recognizer = recognizer
        self.resolver = resolver
        self.correlator = correlator
        self.channel = channel
        self.min_confidence = min_confidence
        self.fallback_dialog = fallback_dialog
        self.registry.resolve(fallback_dialog)

    # ── Chat turns ────────────────────────────────────

    async def handle_message(self, address: str, text: str, deliver: bool = False) -> TurnResult:
        """
        Process one inbound utterance. Replies are returned; with `deliver`
        they are also pushed through the chat channel.
        """
        logger.info("message_received", address=address, length=len(text))

        try:
            candidates = await self.recognizer.recognize(text)
        except RecognitionFailure as e:
            logger.warning("recognition_failed", address=address, error=str(e))
            candidates = []
        intent = select_intent(candidates, self.min_confidence)

        async with self.store.transaction(address, create=True) as conversation:
            session = DialogSession(conversation, self)
            self.resolver.discard_if_expired(conversation)

            triggered = self.registry.find_by_intent(intent.name) if intent else None
            active = conversation.active_frame

            if triggered is not None:
                session.clear_stack()
                dialog_name = triggered.name
                await self.invoke_dialog(session, triggered.name, intent)
            elif active is not None and active.awaiting_input:
                dialog_name = active.dialog
                await self.continue_dialog(session, text)
            else:
                if candidates and intent is None:
                    logger.info("intent_below_threshold",
                                address=address,
                                top=candidates[0].name,
                                score=round(candidates[0].score, 3),
                                min_confidence=self.min_confidence)
                dialog_name = self.fallback_dialog
                fallback_args = candidates[0] if candidates else Intent(name=NONE_INTENT, text=text)
                await self.invoke_dialog(session, self.fallback_dialog, fallback_args)

        await session.committed()

        logger.info("turn_completed",
                    address=address,
                    intent=intent.name if intent else None,
                    dialog=dialog_name,
                    replies=len(session.outbox))
        if deliver:
            await self._deliver(address, session.outbox)
        return TurnResult(
            address=address,
            intent=intent,
            dialog=dialog_name,
            replies=list(session.outbox),
            auth_url=session.auth_url,
        )

    # ── Dialog invocation ─────────────────────────────

    async def invoke_dialog(self, session: DialogSession, name: str, args: Intent) -> None:
        """The one way a dialog gets started, from a turn, a dialog, or a callback."""
        try:
            dialog = self.registry.resolve(name)
        except UnknownDialogError:
            if name == self.fallback_dialog:
                raise
            logger.error("unknown_dialog", address=session.address, dialog=name)
            dialog = self.registry.resolve(self.fallback_dialog)

        missing = self._missing_prerequisite(session, dialog)
        if missing is not None:
            await self._gate(session, dialog, args, missing)
            return

        frame = session.push(dialog.name)
        logger.debug("dialog_started", address=session.address, dialog=dialog.name)
        try:
            await dialog.begin(session, args)
        except CalendarProviderError as e:
            logger.warning("calendar_provider_failed",
                           address=session.address, dialog=dialog.name, error=str(e))
            session.send(PROVIDER_ERROR_MESSAGE)
            frame.awaiting_input = False
        self._settle(session, frame)

    async def continue_dialog(self, session: DialogSession, text: str) -> None:
        frame = session.frame
        try:
            dialog = self.registry.resolve(frame.dialog)
        except UnknownDialogError:
            logger.error("unknown_dialog_on_stack", address=session.address, dialog=frame.dialog)
            session.clear_stack()
            await self.invoke_dialog(session, self.fallback_dialog, Intent(name=NONE_INTENT, text=text))
            return

        frame.awaiting_input = False
        if dialog.resume is None:
            self._settle(session, frame)
            await self.invoke_dialog(session, self.fallback_dialog, Intent(name=NONE_INTENT, text=text))
            return

        logger.debug("dialog_resumed", address=session.address, dialog=dialog.name, step=frame.step)
        try:
            await dialog.resume(session, frame, text)
        except CalendarProviderError as e:
            logger.warning("calendar_provider_failed",
                           address=session.address, dialog=dialog.name, error=str(e))
            session.send(PROVIDER_ERROR_MESSAGE)
            frame.awaiting_input = False
        self._settle(session, frame)

    @staticmethod
    def _missing_prerequisite(session: DialogSession, dialog: Dialog) -> Optional[str]:
        if dialog.requires_calendar and not session.has(CALENDAR_ID):
            return CALENDAR_ID
        if (dialog.requires_auth or dialog.requires_calendar) and not session.has(CREDENTIALS):
            return CREDENTIALS
        return None

    async def _gate(self, session: DialogSession, dialog: Dialog, args: Intent, missing: str) -> None:
        if session.resumed:
            logger.warning("resumed_dialog_gated",
                           address=session.address, dialog=dialog.name, missing=missing)
            session.send(NEEDS_CALENDAR_MESSAGE if missing == CALENDAR_ID else NEEDS_CREDENTIALS_MESSAGE)
            return

        logger.info("dialog_needs_auth", address=session.address, dialog=dialog.name, missing=missing)
        if missing == CALENDAR_ID:
            url = await session.request_auth()
        else:
            url = await session.request_auth(dialog.name, args)
        session.send(sign_in_message(url))

    @staticmethod
    def _settle(session: DialogSession, frame: DialogFrame) -> None:
        """Pop `frame` unless it is waiting for the user's next message."""
        if frame.awaiting_input:
            return
        stack = session.stack
        for i in range(len(stack) - 1, -1, -1):
            if stack[i] is frame:
                del stack[i]
                return

    # ── OAuth callbacks ───────────────────────────────

    async def handle_callback(self, token: str, payload: dict[str, Any]) -> CallbackResult:
        result = await self.correlator.on_callback(token, payload)

        if result.resumed:
            continuation = result.continuation
            async with self.store.transaction(result.address) as conversation:
                session = DialogSession(conversation, self, resumed=True)
                session.send(SIGNED_IN_MESSAGE)
                await self.invoke_dialog(
                    session, continuation.follow_up_dialog, continuation.follow_up_args,
                )
            await session.committed()
            result.replies = list(session.outbox)
            await self._deliver(result.address, result.replies)
        elif result.reason == "exchange_failed" and result.address:
            result.replies = [LOGIN_FAILED_MESSAGE]
            await self._deliver(result.address, result.replies)

        return result

    async def _deliver(self, address: str, replies: list[str]) -> None:
        if self.channel is None:
            return
        for text in replies:
            await self.channel.send(address, text)

    # ── Housekeeping ──────────────────────────────────

    async def close(self) -> None:
        await self.recognizer.close()
        await self.resolver.provider.close()
        await self.store.close()


# ──────────────────────────────────────────────────────────────
#  Runtime assembly
# ──────────────────────────────────────────────────────────────

@dataclass
class Runtime:
    settings: Settings
    store: BaseConversationStore
    registry: DialogRegistry
    provider: OAuthProvider
    calendar: CalendarClient
    channel: ChatAdapter
    dispatcher: Dispatcher

    @property
    def resolver(self) -> ContinuationResolver:
        return self.dispatcher.resolver

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.calendar.close()
        await self.channel.shutdown()


def build_runtime(
    settings: Settings = None,
    store: BaseConversationStore = None,
    recognizer: IntentRecognizer = None,
    provider: OAuthProvider = None,
    calendar: CalendarClient = None,
    channel: ChatAdapter = None,
    clock=None,
) -> Runtime:
    """Wire every component from settings; any piece can be passed in instead."""
    settings = settings or get_settings()
    store = store or create_store(settings.database)
    provider = provider or GoogleOAuthProvider(settings.oauth)
    calendar = calendar or GoogleCalendarClient(settings.calendar)
    recognizer = recognizer or create_recognizer(settings.recognizer)
    channel = channel or ChatAdapter(max_queue_size=settings.chat.max_queue_size)

    clock_kwargs = {"clock": clock} if clock else {}
    registry = create_default_registry(calendar, **clock_kwargs)
    resolver = ContinuationResolver(
        store, registry, provider,
        token_ttl_seconds=settings.oauth.token_ttl_seconds,
        **clock_kwargs,
    )
    correlator = CallbackCorrelator(store, resolver, provider)
    dispatcher = Dispatcher(
        store, registry, recognizer, resolver, correlator,
        channel=channel,
        min_confidence=settings.recognizer.min_confidence,
    )
    logger.info("runtime_built",
                store=type(store).__name__,
                recognizer=type(recognizer).__name__,
                libraries=registry.libraries)
    return Runtime(settings, store, registry, provider, calendar, channel, dispatcher)
