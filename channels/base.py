"""
Channel Adapters — base infrastructure for outbound chat delivery.

Provides:
- ChannelError: structured error for channel operations
- ChannelMetrics: per-channel send/queue/fail tracking
- InputSanitizer: strips control characters and bounds inbound text
- ChannelAdapter: abstract base wrapping every send with metrics
"""
from __future__ import annotations

import abc
import time
import uuid
import structlog
from typing import Any

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

class ChannelMetrics:
    """Tracks per-channel delivered, queued and failed sends."""

    def __init__(self, channel: str):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_queued: int = 0
        self.messages_failed: int = 0
        self._latencies: list[float] = []
        self._errors: list[str] = []

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_queued(self):
        self.messages_queued += 1

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.messages_sent,
            "queued": self.messages_queued,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "recent_errors": self._errors[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  INPUT SANITIZER
# ══════════════════════════════════════════════════════════════

class InputSanitizer:
    def __init__(self, max_length: int = 2000):
        self.max_length = max_length

    def sanitize(self, content: str) -> str:
        if not content:
            return ""
        content = "".join(
            c for c in content if c in ("\n", "\t", "\r") or (ord(c) >= 32)
        )
        if len(content) > self.max_length:
            content = content[: self.max_length]
        return content.strip()


# ══════════════════════════════════════════════════════════════
#  CHANNEL ADAPTER (abstract base)
# ══════════════════════════════════════════════════════════════

class ChannelAdapter(abc.ABC):
    """
    Base class for channel adapters.

    Subclasses implement _do_send. The base class wraps every send with
    metrics; a ChannelError becomes a "failed" result.
    """

    channel_name: str = ""

    def __init__(self):
        self._initialized = False
        self._config: dict[str, Any] = {}
        self._metrics = ChannelMetrics(self.channel_name)
        self._sanitizer = InputSanitizer()

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def _do_send(self, address: str, content: str, metadata: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def initialize(self, config: dict[str, Any]) -> None:
        ...

    # ── Public send ───────────────────────────────────────────

    async def send(self, address: str, content: str, metadata: dict[str, Any] = None) -> dict[str, Any]:
        metadata = metadata or {}
        message_id = metadata.get("message_id", str(uuid.uuid4()))
        start = time.monotonic()

        try:
            result = await self._do_send(address, content, metadata)
        except ChannelError as e:
            logger.error("channel_send_failed", channel=self.channel_name, address=address, error=str(e))
            self._metrics.record_failure(str(e))
            return {"status": "failed", "message_id": message_id, "error": str(e)}

        status = result.get("status")
        if status == "delivered":
            self._metrics.record_send((time.monotonic() - start) * 1000)
        elif status == "queued":
            self._metrics.record_queued()
        else:
            self._metrics.record_failure(result.get("error", ""))
        result.setdefault("message_id", message_id)
        return result

    def sanitize(self, content: str) -> str:
        return self._sanitizer.sanitize(content)

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel_name,
            "initialized": self._initialized,
            "metrics": self._metrics.to_dict(),
        }

    async def shutdown(self) -> None:
        pass
