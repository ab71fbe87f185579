"""
Envelope routing between registered peers.
"""
from typing import Optional

from lambdachat.core.logging import LoggerMixin
from lambdachat.signaling.envelope import (
    Envelope,
    NewPeer,
    PeerDisconnected,
    RoutedEnvelope,
    encode_envelope,
)
from lambdachat.signaling.registry import Peer, PeerRegistry


class RelayRouter(LoggerMixin):
    """Delivers envelopes to one named peer or to every other peer."""

    def __init__(self, registry: PeerRegistry):
        super().__init__()
        self.registry = registry

    async def send_to_peer(self, peer: Peer, envelope: Envelope) -> bool:
        """Send an envelope to a single peer if its transport is open."""
        if not peer.is_open:
            return False

        try:
            await peer.transport.send_str(encode_envelope(envelope))
            return True
        except (ConnectionError, RuntimeError) as e:
            # Transport closed between the open check and the write
            self.log_warning(f"Failed to send envelope to peer", {
                "peer_id": peer.peer_id,
                "type": envelope.TYPE,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False

    async def broadcast(self, envelope: Envelope, exclude_peer_id: Optional[int] = None) -> int:
        """Send an envelope to every open peer except the excluded one."""
        sent_count = 0

        # Snapshot: a send may yield and let a disconnect mutate the registry
        for peer in self.registry.peers():
            if peer.peer_id == exclude_peer_id:
                continue
            if await self.send_to_peer(peer, envelope):
                sent_count += 1

        self.log_debug(f"Broadcast completed", {
            "type": envelope.TYPE,
            "exclude_peer_id": exclude_peer_id,
            "sent_count": sent_count
        })
        return sent_count

    async def broadcast_join(self, new_peer: Peer) -> int:
        """Announce a newly registered peer to everyone else."""
        envelope = NewPeer(peer_id=new_peer.peer_id, username=new_peer.username)
        return await self.broadcast(envelope, exclude_peer_id=new_peer.peer_id)

    async def forward_or_broadcast(self, envelope: RoutedEnvelope, sender_id: int,
                                   sender_username: str) -> int:
        """Stamp the sender onto a client envelope and deliver it.

        Targeted envelopes go to the named peer only, and are dropped when
        that peer is gone or its transport is closed. Untargeted envelopes
        go to every other open peer.
        """
        envelope = envelope.stamped(sender_id, sender_username)

        if envelope.target_peer_id is None:
            return await self.broadcast(envelope, exclude_peer_id=sender_id)

        target = self.registry.get(envelope.target_peer_id)
        if target is None:
            self.log_debug(f"Dropping envelope for unknown peer", {
                "type": envelope.TYPE,
                "sender_id": sender_id,
                "target_peer_id": envelope.target_peer_id
            })
            return 0

        return 1 if await self.send_to_peer(target, envelope) else 0

    async def broadcast_departure(self, peer_id: int, username: str) -> int:
        """Tell the remaining peers that a peer has left."""
        envelope = PeerDisconnected(peer_id=peer_id, username=username)
        return await self.broadcast(envelope, exclude_peer_id=peer_id)
