"""
Chat client: relay connection plus peer-to-peer chat over data channels.
"""
import asyncio
import contextlib
from typing import Any, Callable, Optional

import websockets

from lambdachat.core.config import ClientConfig
from lambdachat.core.exceptions import ProtocolError
from lambdachat.core.logging import LoggerMixin, debug_log
from lambdachat.signaling.envelope import ExistingPeers, Register, encode_envelope, parse_envelope
from lambdachat.webrtc.data_channel import DataChannelManager
from lambdachat.webrtc.message_handler import ChatMessage, ChatMessageHandler, encode_chat_message
from lambdachat.webrtc.negotiation import NegotiationEngine
from lambdachat.webrtc.transport import AiortcTransport


class ChatClient(LoggerMixin):
    """Joins the room through the relay and chats with peers directly."""

    def __init__(self, config: ClientConfig, transport: Any = None):
        super().__init__()
        self.config = config
        self.local_peer_id: Optional[int] = None
        self.outbox: asyncio.Queue = asyncio.Queue()

        self.channels = DataChannelManager()
        self.message_handler = ChatMessageHandler()
        self.engine = NegotiationEngine(
            transport or AiortcTransport(config.rtc_config),
            self.channels,
            self.outbox,
            on_chat_frame=self.message_handler.handle_message,
            reporter=self.log,
            handshake_timeout=config.handshake_timeout,
            initiate_on_existing_peers=config.initiate_on_existing_peers
        )

    def log(self, level: str, message: str):
        """Send a log line to the configured callback, or to the logger."""
        if self.config.logging_callback is not None:
            self.config.logging_callback(level, message)
        else:
            debug_log(message, None, level.upper())

    def add_message_listener(self, callback: Callable[[ChatMessage], Any]):
        """Register a callback for chat messages, including our own sends."""
        self.message_handler.add_listener(callback)

    async def run(self):
        """Connect to the relay and process signaling until it disconnects."""
        async with websockets.connect(self.config.sig_srv) as ws:
            await ws.send(encode_envelope(Register(username=self.config.username)))
            self.log('info', f"Registered as {self.config.username} with {self.config.sig_srv}")

            writer = asyncio.create_task(self._drain_outbox(ws))
            try:
                async for frame in ws:
                    await self.handle_frame(frame)
            except websockets.exceptions.ConnectionClosed as e:
                self.log('error', f"Relay connection closed: {e}")
            finally:
                writer.cancel()
                with contextlib.suppress(asyncio.CancelledError, websockets.exceptions.ConnectionClosed):
                    await writer
                await self.engine.shutdown()

    async def handle_frame(self, frame: Any):
        """Parse one relay frame and hand it to the negotiation engine."""
        try:
            envelope = parse_envelope(frame)
        except ProtocolError as e:
            self.log('error', f"Ignoring invalid frame from relay: {e}")
            return

        self.log('debug', f"Received message: {envelope.TYPE}")
        if isinstance(envelope, ExistingPeers) and envelope.self_id is not None:
            self.local_peer_id = envelope.self_id

        await self.engine.handle_envelope(envelope)

    async def _drain_outbox(self, ws):
        while True:
            envelope = await self.outbox.get()
            await ws.send(encode_envelope(envelope))

    def send_message(self, text: str) -> int:
        """Fan a chat message out to every open channel.

        Returns the number of peers it was written to. The message is also
        delivered to local listeners so the sender sees it in the room.
        """
        message = text.strip()
        if not message:
            return 0

        sent = self.channels.broadcast_message(
            encode_chat_message(message, self.config.username, self.local_peer_id)
        )
        self.message_handler.dispatch(ChatMessage(
            message=message,
            username=self.config.username,
            sender_id=self.local_peer_id
        ))
        return sent
