"""
Offer/answer/ICE negotiation with every remote peer in the room.

Each remote peer gets a ``SessionState`` in the catalog and its own asyncio
task. Envelopes for a peer are queued on that session's inbox, so one
peer's negotiation steps run strictly in arrival order while the relay read
loop and other peers keep making progress.
"""
import asyncio
from typing import Any, Callable, Dict, Optional

from lambdachat.core.exceptions import NegotiationError
from lambdachat.core.logging import LoggerMixin
from lambdachat.signaling.envelope import (
    Answer,
    Envelope,
    ExistingPeers,
    IceCandidate,
    NewPeer,
    Offer,
    PeerDisconnected,
)
from lambdachat.webrtc.data_channel import DataChannelManager
from lambdachat.webrtc.session import NegotiationStage, SessionCatalog, SessionState


# Inbox marker telling a session task to negotiate as the initiator
START_OFFER = object()


class NegotiationEngine(LoggerMixin):
    """Drives every remote peer's session through its negotiation stages."""

    def __init__(self, transport: Any, channels: DataChannelManager, outbox: asyncio.Queue,
                 on_chat_frame: Optional[Callable[[Any, int], Any]] = None,
                 reporter: Optional[Callable[[str, str], Any]] = None,
                 handshake_timeout: Optional[float] = None,
                 initiate_on_existing_peers: bool = False):
        super().__init__()
        self.transport = transport
        self.channels = channels
        self.outbox = outbox
        self.on_chat_frame = on_chat_frame or (lambda message, peer_id: None)
        self.reporter = reporter
        self.handshake_timeout = handshake_timeout
        self.initiate_on_existing_peers = initiate_on_existing_peers
        self.catalog = SessionCatalog()

    # Relay envelopes

    async def handle_envelope(self, envelope: Envelope):
        """Dispatch one envelope received from the relay."""
        if isinstance(envelope, ExistingPeers):
            for peer in envelope.peers:
                self.open_session(peer.peer_id, peer.username,
                                  initiate=self.initiate_on_existing_peers)

        elif isinstance(envelope, NewPeer):
            # Exactly one side offers: whichever side existing-peers does not
            self.open_session(envelope.peer_id, envelope.username,
                              initiate=not self.initiate_on_existing_peers)

        elif isinstance(envelope, Offer):
            if envelope.sender_id is None:
                self.log_warning(f"Dropping offer without sender")
                return
            session = self.catalog.get(envelope.sender_id)
            if session is None:
                session = self.open_session(envelope.sender_id,
                                            envelope.username or str(envelope.sender_id),
                                            initiate=False)
            elif envelope.username:
                session.username = envelope.username
            session.inbox.put_nowait(envelope)

        elif isinstance(envelope, (Answer, IceCandidate)):
            session = self.catalog.get(envelope.sender_id) if envelope.sender_id is not None else None
            if session is None:
                self.log_debug(f"Dropping {envelope.TYPE} for unknown peer", {
                    "sender_id": envelope.sender_id
                })
                return
            session.inbox.put_nowait(envelope)

        elif isinstance(envelope, PeerDisconnected):
            if await self.close_session(envelope.peer_id, "peer disconnected"):
                self._report('info', f"Peer {envelope.username} ({envelope.peer_id}) disconnected")

        else:
            self.log_warning(f"Unexpected envelope from relay", {"type": envelope.TYPE})

    # Session lifecycle

    def open_session(self, peer_id: int, username: str, initiate: bool) -> SessionState:
        """Create a session for a newly mentioned peer and start its task."""
        session = self.catalog.get(peer_id)
        if session is not None:
            return session

        session = self.catalog.create(peer_id, username)
        loop = asyncio.get_running_loop()
        if self.handshake_timeout:
            session.deadline = loop.time() + self.handshake_timeout
        session.task = loop.create_task(self._run_session(session))

        if initiate:
            session.inbox.put_nowait(START_OFFER)

        self.log_info(f"Session created", {
            "peer_id": peer_id,
            "username": username,
            "initiator": initiate
        })
        return session

    async def close_session(self, peer_id: int, reason: str) -> bool:
        """Close and forget a session. Returns False if it was already gone."""
        session = self.catalog.remove(peer_id)
        if session is None:
            return False

        session.advance(NegotiationStage.CLOSED)

        if session.task is not None and session.task is not asyncio.current_task():
            session.task.cancel()

        await self._discard_connection(session)

        self.log_info(f"Session closed", {"peer_id": peer_id, "reason": reason})
        return True

    async def shutdown(self):
        """Close every session, e.g. when the relay connection ends."""
        for peer_id in self.catalog.peer_ids():
            await self.close_session(peer_id, "local shutdown")

    def get_stage(self, peer_id: int) -> Optional[NegotiationStage]:
        session = self.catalog.get(peer_id)
        return session.stage if session is not None else None

    async def _run_session(self, session: SessionState):
        while not session.is_closed:
            try:
                event = await asyncio.wait_for(session.inbox.get(), self._time_left(session))
            except asyncio.TimeoutError:
                if session.stage is NegotiationStage.CHANNEL_OPEN:
                    continue
                self.log_warning(f"Handshake timed out", {
                    "peer_id": session.peer_id,
                    "stage": session.stage.value
                })
                await self.close_session(session.peer_id, "handshake timeout")
                return

            try:
                await self._handle_event(session, event)
            except Exception as e:
                self.log_error(f"Unexpected negotiation error", {
                    "peer_id": session.peer_id,
                    "stage": session.stage.value,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    def _time_left(self, session: SessionState) -> Optional[float]:
        if session.deadline is None or session.stage is NegotiationStage.CHANNEL_OPEN:
            return None
        return max(0.0, session.deadline - asyncio.get_running_loop().time())

    async def _handle_event(self, session: SessionState, event: Any):
        if event is START_OFFER:
            await self._start_offer(session)
        elif isinstance(event, Offer):
            await self._accept_offer(session, event)
        elif isinstance(event, Answer):
            await self._accept_answer(session, event)
        elif isinstance(event, IceCandidate):
            await self._add_candidate(session, event.payload)

    # Negotiation steps

    async def _start_offer(self, session: SessionState):
        if session.stage is not NegotiationStage.IDLE:
            return

        pc = self._create_connection(session)
        self._attach_channel(session, self.transport.create_data_channel(pc))

        try:
            offer = await self.transport.create_offer(pc)
        except NegotiationError as e:
            self.log_error(f"Error creating offer", {"peer_id": session.peer_id, "error": str(e)})
            await self._discard_connection(session)
            return

        session.advance(NegotiationStage.OFFER_SENT)
        self._send(Offer(payload=offer, target_peer_id=session.peer_id))

    async def _accept_offer(self, session: SessionState, envelope: Offer):
        if session.stage is not NegotiationStage.IDLE:
            # OfferSent here means both sides offered at once; ours stands
            self.log_warning(f"Ignoring offer", {
                "peer_id": session.peer_id,
                "stage": session.stage.value
            })
            return

        pc = self._create_connection(session)
        session.advance(NegotiationStage.OFFER_RECEIVED)

        if not await self._apply_remote_description(session, envelope.payload):
            return

        try:
            answer = await self.transport.create_answer(pc)
        except NegotiationError as e:
            self.log_error(f"Error creating answer", {"peer_id": session.peer_id, "error": str(e)})
            return

        session.advance(NegotiationStage.ANSWER_EXCHANGED)
        self._send(Answer(payload=answer, target_peer_id=session.peer_id))

    async def _accept_answer(self, session: SessionState, envelope: Answer):
        if session.stage is not NegotiationStage.OFFER_SENT:
            self.log_warning(f"Ignoring stale answer", {
                "peer_id": session.peer_id,
                "stage": session.stage.value
            })
            return

        if await self._apply_remote_description(session, envelope.payload):
            session.advance(NegotiationStage.ANSWER_EXCHANGED)

    async def _add_candidate(self, session: SessionState, candidate: Dict[str, Any]):
        if not session.remote_description_set:
            session.pending_candidates.append(candidate)
            self.log_debug(f"Queued ICE candidate until remote description is set", {
                "peer_id": session.peer_id,
                "queued": len(session.pending_candidates)
            })
            return
        await self._apply_candidate(session, candidate)

    async def _apply_remote_description(self, session: SessionState, description: Dict[str, Any]) -> bool:
        try:
            await self.transport.apply_remote_description(session.connection, description)
        except NegotiationError as e:
            self._report('error', f"Error setting remote description: {e}")
            return False

        session.remote_description_set = True
        while session.pending_candidates:
            await self._apply_candidate(session, session.pending_candidates.pop(0))
        return True

    async def _apply_candidate(self, session: SessionState, candidate: Dict[str, Any]):
        try:
            await self.transport.add_candidate(session.connection, candidate)
        except NegotiationError as e:
            self._report('error', f"Error adding received ice candidate: {e}")

    # Transport callbacks

    def _create_connection(self, session: SessionState) -> Any:
        pc = None

        def is_live() -> bool:
            # Events from a discarded connection are ignored
            return self.catalog.get(session.peer_id) is session and session.connection is pc

        def on_local_candidate(candidate: Dict[str, Any]):
            if is_live():
                self._send(IceCandidate(payload=candidate, target_peer_id=session.peer_id))

        def on_remote_channel(channel: Any):
            if is_live():
                self._attach_channel(session, channel)

        async def on_failed():
            if is_live():
                await self.close_session(session.peer_id, "connection failed")

        pc = self.transport.create_connection(
            session.peer_id,
            on_local_candidate=on_local_candidate,
            on_remote_channel=on_remote_channel,
            on_failed=on_failed
        )
        session.connection = pc
        return pc

    async def _discard_connection(self, session: SessionState):
        """Drop a half-built connection so the session is a clean Idle again."""
        pc, session.connection, session.channel = session.connection, None, None
        self.channels.remove_channel(session.peer_id)
        if pc is None:
            return
        try:
            await self.transport.close(pc)
        except Exception as e:
            self.log_error(f"Error closing peer connection", {
                "peer_id": session.peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            })

    def _attach_channel(self, session: SessionState, channel: Any):
        session.channel = channel
        self.channels.add_channel(
            session.peer_id,
            channel,
            message_handler=self.on_chat_frame,
            open_handler=self._on_channel_open,
            close_handler=self._on_channel_close
        )

    def _on_channel_open(self, peer_id: int):
        session = self.catalog.get(peer_id)
        if session is None:
            return
        if session.advance(NegotiationStage.CHANNEL_OPEN):
            self._report('info', f"Data channel to {session.username} ({peer_id}) opened")
        else:
            self.log_warning(f"Data channel opened out of order", {
                "peer_id": peer_id,
                "stage": session.stage.value
            })

    async def _on_channel_close(self, peer_id: int):
        session = self.catalog.get(peer_id)
        if session is not None:
            self._report('info', f"Data channel to {session.username} ({peer_id}) closed")
        await self.close_session(peer_id, "data channel closed")

    def _send(self, envelope: Envelope):
        self.outbox.put_nowait(envelope)

    def _report(self, level: str, message: str):
        if self.reporter is not None:
            self.reporter(level, message)
        else:
            getattr(self, f"log_{level}")(message)
