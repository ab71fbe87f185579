"""
Custom exception classes for Lambda Chat.
"""


class LambdaChatError(Exception):
    """Base exception for Lambda Chat."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class ProtocolError(LambdaChatError):
    """Raised when a signaling frame is malformed or out of sequence."""
    pass


class NegotiationError(LambdaChatError):
    """Raised when the transport rejects a description or candidate."""
    pass


class ConfigError(LambdaChatError):
    """Raised when required configuration is missing."""
    pass
