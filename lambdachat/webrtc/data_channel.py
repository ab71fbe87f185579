"""
Data channel management for peer-to-peer chat.
"""
import asyncio
import json
from typing import Any, Callable, Dict, Optional

from lambdachat.core.logging import LoggerMixin


async def _maybe_await(result):
    if asyncio.iscoroutine(result):
        await result


class DataChannelManager(LoggerMixin):
    """Tracks each remote peer's data channel and fans chat payloads out.

    Channels are registered as soon as they exist; only the ones whose
    ``readyState`` is ``open`` receive sends. Nothing is queued for channels
    that are still connecting.
    """

    def __init__(self):
        super().__init__()
        self.data_channels: Dict[int, Any] = {}

    def add_channel(self, peer_id: int, channel: Any,
                    message_handler: Callable[[Any, int], Any],
                    open_handler: Callable[[int], Any],
                    close_handler: Callable[[int], Any]):
        """Add a data channel and wire its events to the given handlers."""
        self.log_info(f"Adding data channel", {
            "peer_id": peer_id,
            "channel_label": channel.label,
            "total_channels": len(self.data_channels)
        })

        self.data_channels[peer_id] = channel
        self._setup_channel_handlers(peer_id, channel, message_handler, open_handler, close_handler)

        # A remotely created channel may already be open when handed over
        if channel.readyState == "open":
            open_handler(peer_id)

    def remove_channel(self, peer_id: int) -> bool:
        """Remove a data channel. Removing an unknown peer is a no-op."""
        channel = self.data_channels.pop(peer_id, None)
        if channel is None:
            return False

        self.log_info(f"Removing data channel", {
            "peer_id": peer_id,
            "total_channels": len(self.data_channels)
        })
        return True

    def _setup_channel_handlers(self, peer_id: int, channel: Any,
                                message_handler: Callable, open_handler: Callable,
                                close_handler: Callable):

        def is_current() -> bool:
            return self.data_channels.get(peer_id) is channel

        @channel.on("open")
        async def on_open():
            if is_current():
                await _maybe_await(open_handler(peer_id))

        @channel.on("message")
        async def on_message(message):
            if not is_current():
                return
            try:
                await _maybe_await(message_handler(message, peer_id))
            except Exception as e:
                self.log_error("Error handling data channel message", {
                    "peer_id": peer_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

        @channel.on("close")
        async def on_close():
            if not is_current():
                return
            self.log_info(f"Data channel closed", {
                "peer_id": peer_id,
                "total_channels": len(self.data_channels)
            })
            self.remove_channel(peer_id)
            await _maybe_await(close_handler(peer_id))

    def send_message(self, peer_id: int, message: Dict[str, Any]) -> bool:
        """Send a message to one peer if its channel is open."""
        channel = self.data_channels.get(peer_id)
        if channel is None or channel.readyState != "open":
            return False

        try:
            channel.send(json.dumps(message))
            return True
        except Exception as e:
            self.log_error(f"Failed to send message to peer", {
                "peer_id": peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False

    def broadcast_message(self, message: Dict[str, Any], exclude_peer_id: Optional[int] = None) -> int:
        """Send a message to every open channel. Returns the number sent."""
        sent_count = 0

        for peer_id in list(self.data_channels.keys()):
            if peer_id != exclude_peer_id and self.send_message(peer_id, message):
                sent_count += 1

        self.log_debug(f"Broadcast completed", {
            "sent_count": sent_count,
            "total_channels": len(self.data_channels)
        })
        return sent_count

    def is_open(self, peer_id: int) -> bool:
        channel = self.data_channels.get(peer_id)
        return channel is not None and channel.readyState == "open"

    def get_open_peers(self) -> list:
        return [peer_id for peer_id in list(self.data_channels) if self.is_open(peer_id)]

    def get_channel_count(self) -> int:
        return len(self.data_channels)
