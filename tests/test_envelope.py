import json

import pytest

from lambdachat.core.exceptions import ProtocolError
from lambdachat.signaling.envelope import (
    Answer,
    ExistingPeers,
    IceCandidate,
    NewPeer,
    Offer,
    PeerDisconnected,
    PeerInfo,
    Register,
    encode_envelope,
    parse_envelope,
)


OFFER_SDP = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\n"}


def test_parse_register():
    envelope = parse_envelope('{"type": "register", "username": "alice"}')
    assert envelope == Register(username="alice")


@pytest.mark.parametrize("frame", [
    "not json",
    "[1, 2, 3]",
    '{"type": "shout", "username": "alice"}',
    '{"username": "alice"}',
    '{"type": "register"}',
    '{"type": "register", "username": ""}',
])
def test_malformed_frames_are_protocol_errors(frame):
    with pytest.raises(ProtocolError):
        parse_envelope(frame)


def test_existing_peers_wire_format():
    envelope = ExistingPeers(peers=(PeerInfo(1, "alice"),), self_id=2)
    data = json.loads(encode_envelope(envelope))
    assert data == {
        "type": "existing-peers",
        "peers": [{"clientId": 1, "username": "alice"}],
        "selfId": 2,
    }
    assert parse_envelope(data) == envelope


def test_existing_peers_may_be_empty():
    envelope = parse_envelope({"type": "existing-peers", "peers": []})
    assert envelope.peers == ()
    assert envelope.self_id is None


def test_peer_events():
    assert parse_envelope({"type": "new-peer", "peerId": 2, "username": "bob"}) == NewPeer(2, "bob")
    assert parse_envelope(
        {"type": "peer-disconnected", "peerId": 2, "username": "bob"}
    ) == PeerDisconnected(2, "bob")


def test_offer_requires_offer_description():
    with pytest.raises(ProtocolError):
        parse_envelope({"type": "offer", "targetPeerId": 2, "offer": {"type": "answer", "sdp": "v=0"}})
    with pytest.raises(ProtocolError):
        parse_envelope({"type": "offer", "targetPeerId": 2, "offer": {"type": "offer", "sdp": ""}})


def test_answer_and_candidate():
    answer = parse_envelope({"type": "answer", "targetPeerId": 1, "answer": {"type": "answer", "sdp": "v=0"}})
    assert isinstance(answer, Answer)
    assert answer.target_peer_id == 1

    candidate = parse_envelope({
        "type": "ice-candidate",
        "targetPeerId": 1,
        "candidate": {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0},
    })
    assert isinstance(candidate, IceCandidate)
    assert candidate.payload["sdpMid"] == "0"

    with pytest.raises(ProtocolError):
        parse_envelope({"type": "ice-candidate", "targetPeerId": 1, "candidate": "oops"})


def test_target_peer_id_must_be_integer():
    with pytest.raises(ProtocolError):
        parse_envelope({"type": "offer", "targetPeerId": "2", "offer": OFFER_SDP})
    with pytest.raises(ProtocolError):
        parse_envelope({"type": "offer", "targetPeerId": True, "offer": OFFER_SDP})


def test_stamping_overwrites_client_supplied_sender():
    offer = parse_envelope({
        "type": "offer",
        "targetPeerId": 2,
        "offer": OFFER_SDP,
        "senderId": 99,
        "username": "mallory",
    })
    stamped = offer.stamped(1, "alice")

    assert stamped.sender_id == 1
    assert stamped.username == "alice"
    assert stamped.target_peer_id == 2
    # the original envelope is untouched
    assert offer.sender_id == 99

    data = stamped.to_dict()
    assert data["senderId"] == 1
    assert data["offer"] == OFFER_SDP


def test_untargeted_offer_has_no_target_field():
    offer = Offer(payload=OFFER_SDP)
    assert "targetPeerId" not in offer.to_dict()
