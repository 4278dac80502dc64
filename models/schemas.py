"""
Core data models for the calendar assistant.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class AuthState(str, Enum):
    """Lifecycle of one authentication attempt."""
    NEEDS_AUTH = "needs_auth"
    REDIRECTING = "redirecting"
    AWAITING_CALLBACK = "awaiting_callback"
    RESUMED = "resumed"
    ABANDONED = "abandoned"


class TokenStatus(str, Enum):
    ISSUED = "issued"
    CONSUMED = "consumed"
    REVOKED = "revoked"             # superseded by a newer auth request
    EXPIRED = "expired"


class CallbackOutcome(str, Enum):
    RESUMED = "resumed"
    REJECTED = "rejected"


# ──────────────────────────────────────────────────────────────
#  Recognition: entities and intents
# ──────────────────────────────────────────────────────────────

class Entity(BaseModel):
    """
    Canonical (type, value, normalized_value?) record.

    Types are free strings so unrecognized recognizer types pass through.
    """
    type: str
    value: str
    normalized_value: Optional[Any] = None
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    score: Optional[float] = None

    @property
    def resolved(self) -> Any:
        """Normalized value when the recognizer supplied one, raw value otherwise."""
        return self.normalized_value if self.normalized_value is not None else self.value


class Intent(BaseModel):
    """Result of classifying one utterance, or a synthesized argument bag."""
    name: str = "None"
    entities: list[Entity] = []
    score: float = 0.0
    text: str = ""                             # source utterance, empty when synthesized

    def find_entity(self, entity_type: str) -> Optional[Entity]:
        return next((e for e in self.entities if e.type == entity_type), None)

    def find_entities(self, entity_type: str) -> list[Entity]:
        return [e for e in self.entities if e.type == entity_type]

    def entity_value(self, entity_type: str, default: Any = None) -> Any:
        entity = self.find_entity(entity_type)
        return entity.resolved if entity else default


# ──────────────────────────────────────────────────────────────
#  Conversation: dialog stack, private state, continuation slot
# ──────────────────────────────────────────────────────────────

class DialogFrame(BaseModel):
    """
    One entry on the dialog stack. `dialog` is the tag naming the dialog
    that owns the frame; `data` is that dialog's scratch space.
    """
    dialog: str
    step: str = ""
    awaiting_input: bool = False
    data: dict[str, Any] = {}


class PendingContinuation(BaseModel):
    """What to run once the user comes back from the OAuth provider."""
    follow_up_dialog: str
    follow_up_args: Intent
    token: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class Conversation(BaseModel):
    address: str
    dialog_stack: list[DialogFrame] = []
    private_data: dict[str, Any] = {}
    pending_continuation: Optional[PendingContinuation] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def active_frame(self) -> Optional[DialogFrame]:
        return self.dialog_stack[-1] if self.dialog_stack else None


# ──────────────────────────────────────────────────────────────
#  Auth: correlation tokens and credentials
# ──────────────────────────────────────────────────────────────

class CorrelationToken(BaseModel):
    """Opaque single-use value carried in the OAuth `state` parameter."""
    token: str
    address: str
    status: TokenStatus = TokenStatus.ISSUED
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    consumed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def short(self) -> str:
        return self.token[:8]


class OAuthCredentials(BaseModel):
    access_token: str
    refresh_token: str = ""
    token_type: str = "Bearer"
    scope: str = ""
    expires_at: Optional[datetime] = None


class CallbackResult(BaseModel):
    outcome: CallbackOutcome
    reason: str = ""                          # unknown | consumed | revoked | expired | exchange_failed | superseded
    address: str = ""
    continuation: Optional[PendingContinuation] = None
    replies: list[str] = []

    @property
    def resumed(self) -> bool:
        return self.outcome == CallbackOutcome.RESUMED


# ──────────────────────────────────────────────────────────────
#  Turns
# ──────────────────────────────────────────────────────────────

class TurnResult(BaseModel):
    """What one inbound chat message produced."""
    address: str
    intent: Optional[Intent] = None
    dialog: str = ""
    replies: list[str] = []
    auth_url: str = ""
