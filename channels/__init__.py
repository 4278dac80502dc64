"""Outbound chat delivery."""
from channels.base import ChannelAdapter, ChannelError, ChannelMetrics, InputSanitizer
from channels.chat_adapter import ChatAdapter, QueuedMessage

__all__ = [
    "ChannelAdapter", "ChannelError", "ChannelMetrics", "InputSanitizer",
    "ChatAdapter", "QueuedMessage",
]
