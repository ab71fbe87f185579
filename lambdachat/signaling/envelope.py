"""
Signaling envelopes exchanged over the relay connection.

Every frame on the relay WebSocket is a JSON object whose ``type`` field
selects one of the variants below. Frames are parsed into immutable
dataclasses at the boundary; anything that does not match a known variant
raises ``ProtocolError``.
"""
import json
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from lambdachat.core.exceptions import ProtocolError
from lambdachat.core.validation_utils import ValidationUtils


REGISTER = 'register'
EXISTING_PEERS = 'existing-peers'
NEW_PEER = 'new-peer'
OFFER = 'offer'
ANSWER = 'answer'
ICE_CANDIDATE = 'ice-candidate'
PEER_DISCONNECTED = 'peer-disconnected'


def _require(data: Dict[str, Any], fields: List[str], envelope_type: str):
    error = ValidationUtils.validate_required_fields(data, fields)
    if error:
        raise ProtocolError(error, {"type": envelope_type})


def _require_peer_id(value: Any, field_name: str, envelope_type: str) -> int:
    error = ValidationUtils.validate_peer_id(value, field_name)
    if error:
        raise ProtocolError(error, {"type": envelope_type})
    return value


def _require_username(value: Any, envelope_type: str) -> str:
    if not isinstance(value, str) or not value:
        raise ProtocolError("username must be a non-empty string", {"type": envelope_type})
    return value


@dataclass(frozen=True)
class Register:
    TYPE: ClassVar[str] = REGISTER

    username: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Register":
        _require(data, ['username'], cls.TYPE)
        return cls(username=_require_username(data['username'], cls.TYPE))

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.TYPE, 'username': self.username}


@dataclass(frozen=True)
class PeerInfo:
    peer_id: int
    username: str


@dataclass(frozen=True)
class ExistingPeers:
    TYPE: ClassVar[str] = EXISTING_PEERS

    peers: Tuple[PeerInfo, ...] = ()
    self_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExistingPeers":
        _require(data, ['peers'], cls.TYPE)
        if not isinstance(data['peers'], list):
            raise ProtocolError("peers must be a list", {"type": cls.TYPE})

        peers = []
        for entry in data['peers']:
            if not isinstance(entry, dict):
                raise ProtocolError("peer entry must be an object", {"type": cls.TYPE})
            _require(entry, ['clientId', 'username'], cls.TYPE)
            peers.append(PeerInfo(
                peer_id=_require_peer_id(entry['clientId'], 'clientId', cls.TYPE),
                username=_require_username(entry['username'], cls.TYPE)
            ))

        self_id = data.get('selfId')
        if self_id is not None:
            _require_peer_id(self_id, 'selfId', cls.TYPE)
        return cls(peers=tuple(peers), self_id=self_id)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.TYPE,
            'peers': [{'clientId': p.peer_id, 'username': p.username} for p in self.peers]
        }
        if self.self_id is not None:
            data['selfId'] = self.self_id
        return data


@dataclass(frozen=True)
class _PeerEvent:
    peer_id: int
    username: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        _require(data, ['peerId', 'username'], cls.TYPE)
        return cls(
            peer_id=_require_peer_id(data['peerId'], 'peerId', cls.TYPE),
            username=_require_username(data['username'], cls.TYPE)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.TYPE, 'peerId': self.peer_id, 'username': self.username}


@dataclass(frozen=True)
class NewPeer(_PeerEvent):
    TYPE: ClassVar[str] = NEW_PEER


@dataclass(frozen=True)
class PeerDisconnected(_PeerEvent):
    TYPE: ClassVar[str] = PEER_DISCONNECTED


@dataclass(frozen=True)
class _RoutedEnvelope:
    """Peer-to-peer negotiation message relayed through the server.

    ``sender_id`` and ``username`` are stamped by the relay; values supplied
    by the sending client are never trusted.
    """

    PAYLOAD_FIELD: ClassVar[str] = ''

    payload: Dict[str, Any]
    target_peer_id: Optional[int] = None
    sender_id: Optional[int] = None
    username: Optional[str] = None

    @classmethod
    def _validate_payload(cls, payload: Any):
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        _require(data, [cls.PAYLOAD_FIELD], cls.TYPE)
        error = cls._validate_payload(data[cls.PAYLOAD_FIELD])
        if error:
            raise ProtocolError(error, {"type": cls.TYPE})

        target = data.get('targetPeerId')
        if target is not None:
            _require_peer_id(target, 'targetPeerId', cls.TYPE)
        sender = data.get('senderId')
        if sender is not None:
            _require_peer_id(sender, 'senderId', cls.TYPE)
        username = data.get('username')
        if username is not None and not isinstance(username, str):
            raise ProtocolError("username must be a string", {"type": cls.TYPE})

        return cls(
            payload=data[cls.PAYLOAD_FIELD],
            target_peer_id=target,
            sender_id=sender,
            username=username
        )

    def stamped(self, sender_id: int, username: str):
        """Return a copy carrying the relay-assigned sender identity."""
        return replace(self, sender_id=sender_id, username=username)

    def to_dict(self) -> Dict[str, Any]:
        data = {'type': self.TYPE, self.PAYLOAD_FIELD: self.payload}
        if self.target_peer_id is not None:
            data['targetPeerId'] = self.target_peer_id
        if self.sender_id is not None:
            data['senderId'] = self.sender_id
        if self.username is not None:
            data['username'] = self.username
        return data


@dataclass(frozen=True)
class Offer(_RoutedEnvelope):
    TYPE: ClassVar[str] = OFFER
    PAYLOAD_FIELD: ClassVar[str] = 'offer'

    @classmethod
    def _validate_payload(cls, payload: Any):
        return ValidationUtils.validate_session_description(payload, 'offer')


@dataclass(frozen=True)
class Answer(_RoutedEnvelope):
    TYPE: ClassVar[str] = ANSWER
    PAYLOAD_FIELD: ClassVar[str] = 'answer'

    @classmethod
    def _validate_payload(cls, payload: Any):
        return ValidationUtils.validate_session_description(payload, 'answer')


@dataclass(frozen=True)
class IceCandidate(_RoutedEnvelope):
    TYPE: ClassVar[str] = ICE_CANDIDATE
    PAYLOAD_FIELD: ClassVar[str] = 'candidate'

    @classmethod
    def _validate_payload(cls, payload: Any):
        if not isinstance(payload, dict):
            return "candidate must be an object"
        if not isinstance(payload.get('candidate'), str):
            return "candidate.candidate must be a string"
        return None


Envelope = Union[Register, ExistingPeers, NewPeer, Offer, Answer, IceCandidate, PeerDisconnected]
RoutedEnvelope = Union[Offer, Answer, IceCandidate]

ENVELOPE_TYPES: Dict[str, Type] = {
    cls.TYPE: cls
    for cls in (Register, ExistingPeers, NewPeer, Offer, Answer, IceCandidate, PeerDisconnected)
}

# Variants a registered client may send for the relay to route
ROUTABLE_TYPES = (Offer, Answer, IceCandidate)


def parse_envelope(raw: Union[str, bytes, Dict[str, Any]]) -> Envelope:
    """Parse a JSON frame (or an already-decoded dict) into an envelope."""
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError("Frame is not valid JSON", {"error": str(e)})

    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object", {"received": type(data).__name__})

    envelope_cls = ENVELOPE_TYPES.get(data.get('type'))
    if envelope_cls is None:
        raise ProtocolError("Unknown envelope type", {"type": data.get('type')})

    return envelope_cls.from_dict(data)


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to a JSON text frame."""
    return json.dumps(envelope.to_dict())
