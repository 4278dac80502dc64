"""
Dialog Session — what a dialog handler sees during one turn.

A session wraps the conversation copy held by the current store transaction,
so everything a dialog writes commits (or rolls back) together with the
dialog stack. Replies are buffered in the outbox and delivered by the
dispatcher only after the transaction commits, as is any work registered
with `on_commit` (correlation token writes).
"""
from __future__ import annotations

import structlog
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from database.store_base import MISSING
from models.schemas import Conversation, DialogFrame, Intent, OAuthCredentials

if TYPE_CHECKING:
    from core.dispatcher import Dispatcher

logger = structlog.get_logger()

CALENDAR_ID = "calendarId"
CREDENTIALS = "credentials"


class DialogSession:
    def __init__(self, conversation: Conversation, dispatcher: "Dispatcher", resumed: bool = False):
        self.conversation = conversation
        self.dispatcher = dispatcher
        self.resumed = resumed                     # turn driven by an OAuth callback
        self.outbox: list[str] = []
        self.auth_url: str = ""
        self._on_commit: list[Callable[[], Awaitable[None]]] = []

    @property
    def address(self) -> str:
        return self.conversation.address

    # ── Private conversation state ────────────────────

    def get(self, key: str, default: Any = MISSING) -> Any:
        return self.conversation.private_data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.conversation.private_data[key] = value

    def delete(self, key: str) -> bool:
        return self.conversation.private_data.pop(key, MISSING) is not MISSING

    def has(self, key: str) -> bool:
        return key in self.conversation.private_data

    def credentials(self) -> Optional[OAuthCredentials]:
        raw = self.get(CREDENTIALS, None)
        return OAuthCredentials.model_validate(raw) if raw else None

    @property
    def calendar_id(self) -> Optional[str]:
        return self.get(CALENDAR_ID, None)

    # ── Messages ──────────────────────────────────────

    def send(self, text: str) -> None:
        self.outbox.append(text)

    # ── Dialog stack ──────────────────────────────────

    @property
    def stack(self) -> list[DialogFrame]:
        return self.conversation.dialog_stack

    @property
    def frame(self) -> Optional[DialogFrame]:
        return self.conversation.active_frame

    def push(self, dialog_name: str) -> DialogFrame:
        frame = DialogFrame(dialog=dialog_name)
        self.conversation.dialog_stack.append(frame)
        return frame

    def prompt(self, text: str, step: str, **data: Any) -> None:
        """Ask the user something; the answer is routed to the dialog's resume handler."""
        frame = self.frame
        if frame is None:
            raise RuntimeError("prompt() called with no active dialog")
        frame.step = step
        frame.awaiting_input = True
        frame.data.update(data)
        self.send(text)

    def clear_stack(self) -> None:
        self.conversation.dialog_stack.clear()

    # ── Delegation ────────────────────────────────────

    async def begin_dialog(self, name: str, args: Intent = None) -> None:
        await self.dispatcher.invoke_dialog(self, name, args or Intent(name=name, score=1.0))

    async def request_auth(self, follow_up_dialog: str = None, follow_up_args: Intent = None) -> str:
        """Send the user to the OAuth provider; `follow_up_dialog` runs when they return."""
        url = await self.dispatcher.resolver.request_auth(
            self, follow_up_dialog=follow_up_dialog, follow_up_args=follow_up_args,
        )
        self.auth_url = url
        return url

    # ── After commit ──────────────────────────────────

    def on_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Defer `callback` until the conversation has been written back."""
        self._on_commit.append(callback)

    async def committed(self) -> None:
        """Run deferred work in registration order. Call once the transaction exits cleanly."""
        callbacks, self._on_commit = self._on_commit, []
        for callback in callbacks:
            await callback()
