"""
Per-peer negotiation sessions.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class NegotiationStage(enum.Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_EXCHANGED = "answer-exchanged"
    CHANNEL_OPEN = "channel-open"
    CLOSED = "closed"


# Forward edges only; CLOSED is reachable from every live stage
_TRANSITIONS = {
    NegotiationStage.IDLE: {NegotiationStage.OFFER_SENT, NegotiationStage.OFFER_RECEIVED},
    NegotiationStage.OFFER_SENT: {NegotiationStage.ANSWER_EXCHANGED},
    NegotiationStage.OFFER_RECEIVED: {NegotiationStage.ANSWER_EXCHANGED},
    NegotiationStage.ANSWER_EXCHANGED: {NegotiationStage.CHANNEL_OPEN},
    NegotiationStage.CHANNEL_OPEN: set(),
    NegotiationStage.CLOSED: set(),
}


@dataclass
class SessionState:
    """Negotiation progress and transport handles for one remote peer."""

    peer_id: int
    username: str
    stage: NegotiationStage = NegotiationStage.IDLE
    connection: Any = None
    channel: Any = None
    remote_description_set: bool = False
    pending_candidates: List[Dict[str, Any]] = field(default_factory=list)
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    deadline: Optional[float] = None

    def can_advance(self, stage: NegotiationStage) -> bool:
        if stage is NegotiationStage.CLOSED:
            return self.stage is not NegotiationStage.CLOSED
        return stage in _TRANSITIONS[self.stage]

    def advance(self, stage: NegotiationStage) -> bool:
        """Move to ``stage`` if that is a legal next step. Returns whether it moved."""
        if not self.can_advance(stage):
            return False
        self.stage = stage
        return True

    @property
    def is_closed(self) -> bool:
        return self.stage is NegotiationStage.CLOSED


class SessionCatalog:
    """Maps remote peer ids to their live sessions."""

    def __init__(self):
        self._sessions: Dict[int, SessionState] = {}

    def create(self, peer_id: int, username: str) -> SessionState:
        session = SessionState(peer_id=peer_id, username=username)
        self._sessions[peer_id] = session
        return session

    def get(self, peer_id: int) -> Optional[SessionState]:
        return self._sessions.get(peer_id)

    def remove(self, peer_id: int) -> Optional[SessionState]:
        return self._sessions.pop(peer_id, None)

    def peer_ids(self) -> List[int]:
        return list(self._sessions.keys())

    def in_stage(self, stage: NegotiationStage) -> List[SessionState]:
        return [s for s in self._sessions.values() if s.stage is stage]

    def __contains__(self, peer_id: int) -> bool:
        return peer_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

