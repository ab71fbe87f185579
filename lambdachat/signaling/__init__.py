"""
Signaling relay for Lambda Chat.
Handles peer registration and offer/answer/ICE routing.
"""

from .registry import Peer, PeerRegistry
from .router import RelayRouter
from .server import RelayServer, create_app, run_relay

__all__ = [
    'Peer',
    'PeerRegistry',
    'RelayRouter',
    'RelayServer',
    'create_app',
    'run_relay'
]
