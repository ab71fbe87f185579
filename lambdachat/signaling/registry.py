"""
Peer registry for the relay.
"""
import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from lambdachat.core.logging import LoggerMixin


@dataclass
class Peer:
    """A registered peer and the WebSocket it is connected on."""

    peer_id: int
    username: str
    transport: Any

    @property
    def is_open(self) -> bool:
        return not self.transport.closed


class PeerRegistry(LoggerMixin):
    """Owns the set of registered peers and hands out peer ids.

    Ids start at 1 and are never reused for the lifetime of the registry.
    All mutation happens from the relay's event loop, one callback at a time.
    """

    def __init__(self):
        super().__init__()
        self._peers: Dict[int, Peer] = {}
        self._ids = itertools.count(1)

    def register(self, transport: Any, username: str) -> int:
        """Store a peer for an already validated ``register`` frame."""
        peer_id = next(self._ids)
        self._peers[peer_id] = Peer(peer_id=peer_id, username=username, transport=transport)

        self.log_info(f"Client {peer_id} ({username}) connected", {
            "peer_id": peer_id,
            "total_peers": len(self._peers)
        })
        return peer_id

    def list_others(self, excluding: int) -> List[Tuple[int, str]]:
        """Snapshot of (peer_id, username) for everyone except ``excluding``."""
        return [
            (peer.peer_id, peer.username)
            for peer in self._peers.values()
            if peer.peer_id != excluding
        ]

    def remove(self, peer_id: int) -> Optional[Peer]:
        """Remove a peer. Returns the removed peer, or None if already gone."""
        peer = self._peers.pop(peer_id, None)
        if peer is not None:
            self.log_info(f"Client {peer_id} ({peer.username}) disconnected", {
                "peer_id": peer_id,
                "total_peers": len(self._peers)
            })
        return peer

    def get(self, peer_id: int) -> Optional[Peer]:
        return self._peers.get(peer_id)

    def peers(self) -> List[Peer]:
        """Snapshot of all registered peers in registration order."""
        return list(self._peers.values())

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, peer_id: int) -> bool:
        return peer_id in self._peers
