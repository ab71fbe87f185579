"""
Relay (signaling) server.

Peers connect over a WebSocket, register a username, learn about each other
and exchange offer/answer/ICE envelopes. Chat traffic never passes through
the relay.
"""
import asyncio
from typing import Optional

from aiohttp import web, WSMsgType

from lambdachat.core.config import RelayConfig
from lambdachat.core.exceptions import ProtocolError
from lambdachat.core.logging import LoggerMixin, setup_logging, debug_log
from lambdachat.signaling.envelope import (
    ExistingPeers,
    PeerInfo,
    Register,
    ROUTABLE_TYPES,
    encode_envelope,
    parse_envelope,
)
from lambdachat.signaling.registry import Peer, PeerRegistry
from lambdachat.signaling.router import RelayRouter


class RelayServer(LoggerMixin):
    """Runs the per-connection state machine on top of the registry and router.

    A connection starts unregistered. Its first frame must be a well-formed
    ``register`` envelope, otherwise the connection is closed without touching
    the registry. Once registered, the connection stays registered until its
    transport closes, at which point the peer is removed and its departure is
    broadcast.
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        super().__init__()
        self.config = config or RelayConfig()
        self.registry = PeerRegistry()
        self.router = RelayRouter(self.registry)

    async def serve(self, ws: web.WebSocketResponse):
        """Drive one prepared WebSocket until it closes."""
        peer = await self._register(ws)
        if peer is None:
            return

        try:
            await self._announce(peer)
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    if not await self._route(peer, msg.data):
                        await ws.close()
                        break
                elif msg.type == WSMsgType.ERROR:
                    self.log_error(f"WebSocket error", {
                        "peer_id": peer.peer_id,
                        "error": str(ws.exception())
                    })
                    break
                else:
                    self.log_warning(f"Closing peer that sent a non-text frame", {
                        "peer_id": peer.peer_id,
                        "frame_type": str(msg.type)
                    })
                    await ws.close()
                    break
        finally:
            await self.disconnect(peer.peer_id)

    async def _register(self, ws: web.WebSocketResponse) -> Optional[Peer]:
        msg = await ws.receive()
        if msg.type != WSMsgType.TEXT:
            self.log_warning(f"Connection closed before registering", {"frame_type": str(msg.type)})
            await ws.close()
            return None

        try:
            envelope = parse_envelope(msg.data)
        except ProtocolError as e:
            self.log_error(f"Error processing initial message", {"error": str(e)})
            await ws.close()
            return None

        if not isinstance(envelope, Register):
            self.log_warning(f"First message was not a registration", {"type": envelope.TYPE})
            await ws.close()
            return None

        peer_id = self.registry.register(ws, envelope.username)
        return self.registry.get(peer_id)

    async def _announce(self, peer: Peer):
        """Tell a new peer who is here and tell everyone else about it."""
        existing = ExistingPeers(
            peers=tuple(
                PeerInfo(peer_id=other_id, username=username)
                for other_id, username in self.registry.list_others(peer.peer_id)
            ),
            self_id=peer.peer_id
        )
        await self.router.send_to_peer(peer, existing)
        await self.router.broadcast_join(peer)

    async def _route(self, peer: Peer, frame: str) -> bool:
        """Route one frame from a registered peer. False means protocol violation."""
        try:
            envelope = parse_envelope(frame)
        except ProtocolError as e:
            self.log_error(f"Invalid frame from peer", {
                "peer_id": peer.peer_id,
                "error": str(e)
            })
            return False

        if not isinstance(envelope, ROUTABLE_TYPES):
            self.log_warning(f"Peer sent a non-routable envelope", {
                "peer_id": peer.peer_id,
                "type": envelope.TYPE
            })
            return False

        await self.router.forward_or_broadcast(envelope, peer.peer_id, peer.username)
        return True

    async def disconnect(self, peer_id: int):
        """Remove a peer and announce its departure. Safe to call twice."""
        peer = self.registry.remove(peer_id)
        if peer is not None:
            await self.router.broadcast_departure(peer.peer_id, peer.username)

    def get_status(self) -> dict:
        return {
            'registered_peers': len(self.registry),
            'peers': [
                {'clientId': peer.peer_id, 'username': peer.username}
                for peer in self.registry.peers()
            ]
        }


async def handle_signaling(request):
    """Handle WebSocket connections from chat peers."""
    relay = request.app['relay']
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    await relay.serve(ws)
    return ws


async def handle_status(request):
    """Handle status request."""
    relay = request.app['relay']
    return web.json_response(relay.get_status())


def create_app(config: Optional[RelayConfig] = None) -> web.Application:
    """Create the aiohttp application serving the relay."""
    app = web.Application()
    app['relay'] = RelayServer(config)
    app.router.add_get("/", handle_signaling)
    app.router.add_get("/status", handle_status)
    return app


async def run_relay(config: Optional[RelayConfig] = None):
    """Run the relay until cancelled."""
    config = config or RelayConfig()
    setup_logging(config.log_level, config.log_file)

    app = create_app(config)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    debug_log(f"Starting signaling server", {"host": config.host, "port": config.port})
    await site.start()
    print(f"Signaling server running on ws://{config.host}:{config.port}")

    try:
        await asyncio.Future()
    finally:
        await runner.cleanup()
