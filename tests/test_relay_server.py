import asyncio
import json
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from lambdachat.core.config import RelayConfig
from lambdachat.signaling.server import RelayServer, create_app


TIMEOUT = 5
CLOSED_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)
OFFER_SDP = {"type": "offer", "sdp": "v=0 alice"}
ANSWER_SDP = {"type": "answer", "sdp": "v=0 bob"}
CANDIDATE = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.2 50000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}


def run_with_client(scenario):
    async def runner():
        app = create_app(RelayConfig(log_file=None))
        async with TestClient(TestServer(app)) as client:
            return await scenario(client, app['relay'])
    return asyncio.run(runner())


async def register(client, username):
    ws = await client.ws_connect("/")
    await ws.send_json({"type": "register", "username": username})
    existing = await ws.receive_json(timeout=TIMEOUT)
    return ws, existing


async def expect_closed(ws):
    msg = await ws.receive(timeout=TIMEOUT)
    assert msg.type in CLOSED_TYPES


def test_alice_and_bob_negotiate_through_the_relay():
    async def scenario(client, relay):
        alice, alice_existing = await register(client, "alice")
        assert alice_existing == {"type": "existing-peers", "peers": [], "selfId": 1}

        bob, bob_existing = await register(client, "bob")
        assert bob_existing == {
            "type": "existing-peers",
            "peers": [{"clientId": 1, "username": "alice"}],
            "selfId": 2,
        }
        assert await alice.receive_json(timeout=TIMEOUT) == {
            "type": "new-peer", "peerId": 2, "username": "bob"
        }

        await alice.send_json({"type": "offer", "targetPeerId": 2, "offer": OFFER_SDP})
        offer = await bob.receive_json(timeout=TIMEOUT)
        assert offer["senderId"] == 1
        assert offer["username"] == "alice"
        assert offer["offer"] == OFFER_SDP

        await bob.send_json({"type": "answer", "targetPeerId": 1, "answer": ANSWER_SDP})
        answer = await alice.receive_json(timeout=TIMEOUT)
        assert answer["senderId"] == 2
        assert answer["answer"] == ANSWER_SDP

        await bob.send_json({"type": "ice-candidate", "targetPeerId": 1, "candidate": CANDIDATE})
        candidate = await alice.receive_json(timeout=TIMEOUT)
        assert candidate["type"] == "ice-candidate"
        assert candidate["senderId"] == 2
        assert candidate["candidate"] == CANDIDATE

        await bob.close()
        assert await alice.receive_json(timeout=TIMEOUT) == {
            "type": "peer-disconnected", "peerId": 2, "username": "bob"
        }
        assert len(relay.registry) == 1
        await alice.close()

    run_with_client(scenario)


def test_first_frame_must_be_register():
    async def scenario(client, relay):
        ws = await client.ws_connect("/")
        await ws.send_json({"type": "offer", "targetPeerId": 1, "offer": OFFER_SDP})
        await expect_closed(ws)
        assert len(relay.registry) == 0

    run_with_client(scenario)


def test_invalid_json_before_registration_closes_connection():
    async def scenario(client, relay):
        ws = await client.ws_connect("/")
        await ws.send_str("{not json")
        await expect_closed(ws)
        assert len(relay.registry) == 0

        # a rejected connection does not consume a peer id
        alice, existing = await register(client, "alice")
        assert existing["selfId"] == 1
        await alice.close()

    run_with_client(scenario)


def test_invalid_frame_after_registration_disconnects_only_that_peer():
    async def scenario(client, relay):
        alice, _ = await register(client, "alice")
        carol, _ = await register(client, "carol")
        assert (await alice.receive_json(timeout=TIMEOUT))["type"] == "new-peer"

        await carol.send_str("garbage")
        await expect_closed(carol)

        assert await alice.receive_json(timeout=TIMEOUT) == {
            "type": "peer-disconnected", "peerId": 2, "username": "carol"
        }
        assert len(relay.registry) == 1
        await alice.close()

    run_with_client(scenario)


def test_relay_only_envelopes_from_clients_are_violations():
    async def scenario(client, relay):
        alice, _ = await register(client, "alice")
        await alice.send_json({"type": "register", "username": "again"})
        await expect_closed(alice)

    run_with_client(scenario)


def test_targeted_offer_to_departed_peer_is_dropped():
    async def scenario(client, relay):
        alice, _ = await register(client, "alice")
        bob, _ = await register(client, "bob")
        assert (await alice.receive_json(timeout=TIMEOUT))["type"] == "new-peer"

        await bob.close()
        assert (await alice.receive_json(timeout=TIMEOUT))["type"] == "peer-disconnected"

        await alice.send_json({"type": "offer", "targetPeerId": 2, "offer": OFFER_SDP})
        # alice stays connected and keeps receiving room events
        carol, _ = await register(client, "carol")
        assert await alice.receive_json(timeout=TIMEOUT) == {
            "type": "new-peer", "peerId": 3, "username": "carol"
        }
        await alice.close()
        await carol.close()

    run_with_client(scenario)


def test_status_reports_registered_peers():
    async def scenario(client, relay):
        alice, _ = await register(client, "alice")
        resp = await client.get("/status")
        assert resp.status == 200
        assert await resp.json() == {
            "registered_peers": 1,
            "peers": [{"clientId": 1, "username": "alice"}],
        }
        await alice.close()

    run_with_client(scenario)


class StalledSocket:
    """Registers, then never finishes writing the existing-peers reply."""

    def __init__(self):
        self.closed = False
        self.sending = asyncio.Event()

    async def receive(self):
        return SimpleNamespace(type=WSMsgType.TEXT, data=json.dumps({"type": "register", "username": "alice"}))

    async def send_str(self, data):
        self.sending.set()
        await asyncio.get_running_loop().create_future()

    async def close(self):
        self.closed = True


def test_peer_cancelled_during_announcement_is_removed():
    async def scenario():
        relay = RelayServer(RelayConfig(log_file=None))
        ws = StalledSocket()
        task = asyncio.create_task(relay.serve(ws))
        await asyncio.wait_for(ws.sending.wait(), TIMEOUT)
        assert len(relay.registry) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(relay.registry) == 0

    asyncio.run(scenario())
