"""
Core module for Lambda Chat.
Contains configuration, logging, and common utilities.
"""

from .config import RelayConfig, ClientConfig
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import LambdaChatError, ProtocolError, NegotiationError, ConfigError

__all__ = [
    'RelayConfig',
    'ClientConfig',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'LambdaChatError',
    'ProtocolError',
    'NegotiationError',
    'ConfigError'
]
