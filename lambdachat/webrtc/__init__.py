"""
WebRTC module for Lambda Chat.
Handles peer negotiation, data channels, and chat messages.
"""

from .session import NegotiationStage, SessionState, SessionCatalog
from .data_channel import DataChannelManager
from .message_handler import ChatMessage, ChatMessageHandler
from .negotiation import NegotiationEngine
from .transport import AiortcTransport
from .client import ChatClient

__all__ = [
    'NegotiationStage',
    'SessionState',
    'SessionCatalog',
    'DataChannelManager',
    'ChatMessage',
    'ChatMessageHandler',
    'NegotiationEngine',
    'AiortcTransport',
    'ChatClient'
]
