"""
Chat Channel Adapter — WebSocket-based delivery keyed by conversation address.

Provides:
- Connection lifecycle with registration and superseding
- Offline message queue with drain-on-reconnect
- Polling drain for clients without a socket
- Client event routing (message, heartbeat)

Replies produced by an OAuth callback arrive while the user is looking at the
provider's page, not at the chat, so they are usually queued here first.
"""
from __future__ import annotations

import json
import uuid
import structlog
from typing import Any, Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field
from collections import deque

from channels.base import ChannelAdapter, ChannelError

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  QUEUE MODEL
# ══════════════════════════════════════════════════════════════

@dataclass
class QueuedMessage:
    """Message queued for delivery when the user reconnects."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "message",
            "message_id": self.message_id,
            "content": self.content,
            "queued_at": self.queued_at.isoformat(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


# ══════════════════════════════════════════════════════════════
#  CHAT ADAPTER
# ══════════════════════════════════════════════════════════════

class ChatAdapter(ChannelAdapter):
    """
    Real-time chat over WebSockets with offline queue.

    - One live connection per address; a new connection replaces the old
    - Sends to an absent or broken connection are queued (bounded deque)
    - Queue drained on reconnect, or on demand by the polling endpoint
    """

    channel_name = "chat"

    def __init__(self, max_queue_size: int = 100):
        super().__init__()
        self._connections: dict[str, Any] = {}
        self._offline_queues: dict[str, deque[QueuedMessage]] = {}
        self._max_queue_size: int = max_queue_size

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._max_queue_size = config.get("max_queue_size", self._max_queue_size)
        self._initialized = True

    # ── Connection management ─────────────────────────────────

    async def register_connection(self, address: str, ws: Any) -> None:
        """
        Register a WebSocket connection for a conversation.
        Supersedes any existing connection and drains queued messages.
        """
        existing = self._connections.get(address)
        if existing is not None:
            try:
                await existing.close()
            except RuntimeError:
                pass                                    # already closed
            logger.info("connection_superseded", address=address)

        self._connections[address] = ws
        logger.info("connection_registered", address=address)

        await self._drain_to_socket(address, ws)

    async def remove_connection(self, address: str, ws: Any) -> None:
        """Forget `ws`. A socket that was already superseded leaves its replacement alone."""
        if self._connections.get(address) is not ws:
            return
        del self._connections[address]
        logger.info("connection_removed", address=address)

    def is_connected(self, address: str) -> bool:
        return address in self._connections

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(self, address: str, content: str, metadata: dict[str, Any]) -> dict[str, Any]:
        if not address:
            raise ChannelError("No chat address", channel=self.channel_name)

        ws = self._connections.get(address)
        if ws is None:
            self._enqueue(address, content, metadata)
            return {"status": "queued"}

        msg_id = str(uuid.uuid4())
        payload = {
            "type": "message",
            "message_id": msg_id,
            "content": content,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            await ws.send_text(json.dumps(payload))
            return {"status": "delivered", "message_id": msg_id}
        except Exception as e:
            # Connection broken: remove and queue
            logger.warning("chat_send_failed", address=address, error=str(e))
            await self.remove_connection(address, ws)
            self._enqueue(address, content, metadata)
            return {"status": "queued", "message_id": msg_id, "error": str(e)}

    # ── Client event handling ─────────────────────────────────

    async def handle_client_event(self, address: str, event: dict[str, Any]) -> Optional[str]:
        """
        Handle one event from a connected client.
        Returns the utterance text for 'message' events, None otherwise
        (heartbeats only keep the socket busy).
        """
        if event.get("type", "") == "message":
            content = self.sanitize(event.get("content", ""))
            return content or None
        return None

    # ── Offline queue ─────────────────────────────────────────

    def _enqueue(self, address: str, content: str, metadata: dict[str, Any]) -> None:
        if address not in self._offline_queues:
            self._offline_queues[address] = deque(maxlen=self._max_queue_size)
        self._offline_queues[address].append(QueuedMessage(content=content, metadata=metadata))

    def pending(self, address: str) -> int:
        return len(self._offline_queues.get(address, ()))

    def drain(self, address: str) -> list[dict[str, Any]]:
        """Hand queued messages to a polling client."""
        queue = self._offline_queues.pop(address, None)
        return [msg.to_payload() for msg in queue] if queue else []

    async def _drain_to_socket(self, address: str, ws: Any) -> None:
        queue = self._offline_queues.pop(address, None)
        if not queue:
            return
        while queue:
            msg = queue[0]
            try:
                await ws.send_text(json.dumps(msg.to_payload()))
            except Exception as e:
                logger.warning("queue_drain_interrupted", address=address, remaining=len(queue), error=str(e))
                self._offline_queues[address] = queue
                return
            queue.popleft()

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        base = await super().health_check()
        return {
            **base,
            "connected_users": len(self._connections),
            "queued_users": len(self._offline_queues),
            "total_queued_messages": sum(len(q) for q in self._offline_queues.values()),
        }

    async def shutdown(self) -> None:
        for ws in list(self._connections.values()):
            try:
                await ws.close()
            except RuntimeError:
                pass
        self._connections.clear()
