"""
In-memory stand-ins for WebSockets and the WebRTC transport.
"""
import asyncio
import json

from lambdachat.core.exceptions import NegotiationError


async def settle(rounds: int = 50):
    """Let pending session tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeWebSocket:
    """Relay-side transport: records frames, can be closed or made to fail."""

    def __init__(self, fail_with: Exception = None):
        self.closed = False
        self.sent = []
        self.fail_with = fail_with

    async def send_str(self, data: str):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def of_type(self, envelope_type: str):
        return [frame for frame in self.sent if frame['type'] == envelope_type]


class FakeChannel:
    """Data channel with pyee-style ``on`` registration."""

    def __init__(self, label: str = "chat", ready_state: str = "connecting"):
        self.label = label
        self.readyState = ready_state
        self.sent = []
        self.on_send = None
        self._handlers = {}

    def on(self, event):
        def decorator(func):
            self._handlers.setdefault(event, []).append(func)
            return func
        return decorator

    async def emit(self, event, *args):
        for handler in self._handlers.get(event, []):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result

    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("channel not open")
        self.sent.append(json.loads(data))
        if self.on_send is not None:
            self.on_send()

    async def open(self):
        self.readyState = "open"
        await self.emit("open")

    async def close(self):
        self.readyState = "closed"
        await self.emit("close")


class FakeConnection:
    def __init__(self, peer_id, on_local_candidate, on_remote_channel, on_failed):
        self.peer_id = peer_id
        self.on_local_candidate = on_local_candidate
        self.on_remote_channel = on_remote_channel
        self.on_failed = on_failed
        self.local_description = None
        self.remote_description = None
        self.candidates = []
        self.channels = []
        self.closed = False


class FakeTransport:
    """Records every call the negotiation engine makes.

    Adding a candidate before the remote description is applied fails, the
    way a real peer connection rejects it.
    """

    def __init__(self):
        self.connections = []
        self.fail_offers = 0
        self.fail_remote_description = False
        self.fail_candidates = False

    def create_connection(self, peer_id, on_local_candidate, on_remote_channel, on_failed):
        pc = FakeConnection(peer_id, on_local_candidate, on_remote_channel, on_failed)
        self.connections.append(pc)
        return pc

    def connection_for(self, peer_id):
        return [pc for pc in self.connections if pc.peer_id == peer_id][-1]

    def create_data_channel(self, pc, label="chat"):
        channel = FakeChannel(label)
        pc.channels.append(channel)
        return channel

    async def create_offer(self, pc):
        await asyncio.sleep(0)
        if self.fail_offers:
            self.fail_offers -= 1
            raise NegotiationError("offer rejected")
        pc.local_description = {"type": "offer", "sdp": f"v=0 offer for {pc.peer_id}"}
        return pc.local_description

    async def create_answer(self, pc):
        await asyncio.sleep(0)
        pc.local_description = {"type": "answer", "sdp": f"v=0 answer for {pc.peer_id}"}
        return pc.local_description

    async def apply_remote_description(self, pc, description):
        await asyncio.sleep(0)
        if self.fail_remote_description:
            raise NegotiationError("remote description rejected")
        pc.remote_description = description

    async def add_candidate(self, pc, candidate):
        await asyncio.sleep(0)
        if pc.remote_description is None:
            raise NegotiationError("remote description not set")
        if self.fail_candidates:
            raise NegotiationError("candidate rejected")
        pc.candidates.append(candidate)

    async def close(self, pc):
        pc.closed = True


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items
