"""
Chat message decoding for data channel traffic.
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from lambdachat.core.logging import LoggerMixin
from lambdachat.core.validation_utils import ValidationUtils


@dataclass(frozen=True)
class ChatMessage:
    message: str
    username: str
    sender_id: Optional[int] = None
    peer_id: Optional[int] = None


def encode_chat_message(message: str, username: str, sender_id: Optional[int]) -> Dict[str, Any]:
    """Payload written to every open data channel."""
    return {
        'message': message,
        'senderId': sender_id,
        'username': username
    }


class ChatMessageHandler(LoggerMixin):
    """Decodes incoming chat frames and hands them to listeners."""

    def __init__(self):
        super().__init__()
        self.listeners: Set[Callable[[ChatMessage], Any]] = set()

    def add_listener(self, callback: Callable[[ChatMessage], Any]):
        self.listeners.add(callback)

    def handle_message(self, message: Any, peer_id: Optional[int] = None) -> Optional[ChatMessage]:
        """Handle one data channel frame. Malformed frames are logged and dropped."""
        try:
            data = json.loads(message)
        except (TypeError, ValueError) as e:
            self.log_error(f"Failed to parse chat message as JSON", {
                "peer_id": peer_id,
                "error": str(e),
                "message": str(message)[:200]
            })
            return None

        if not isinstance(data, dict):
            self.log_warning(f"Chat message is not an object", {"peer_id": peer_id})
            return None

        error = ValidationUtils.validate_required_fields(data, ['message', 'username'])
        if error:
            self.log_warning(f"Invalid chat message", {"peer_id": peer_id, "error": error})
            return None

        chat_message = ChatMessage(
            message=str(data['message']),
            username=str(data['username']),
            sender_id=data.get('senderId'),
            peer_id=peer_id
        )
        self.dispatch(chat_message)
        return chat_message

    def dispatch(self, chat_message: ChatMessage):
        """Call every listener with a chat message."""
        for callback in list(self.listeners):
            try:
                callback(chat_message)
            except Exception as e:
                self.log_error(f"Error in chat listener", {
                    "error": str(e),
                    "error_type": type(e).__name__
                })
