"""
aiortc adapter exposing the handful of operations the negotiation engine needs.
"""
import asyncio
import datetime
from typing import Any, Callable, Dict, Optional

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceCandidate,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from lambdachat.core.exceptions import NegotiationError
from lambdachat.core.logging import LoggerMixin, debug_log


CHANNEL_LABEL = "chat"


def candidate_to_dict(candidate: RTCIceCandidate) -> Dict[str, Any]:
    """Browser-style RTCIceCandidateInit for an aiortc candidate."""
    return {
        'candidate': "candidate:" + candidate_to_sdp(candidate),
        'sdpMid': candidate.sdpMid,
        'sdpMLineIndex': candidate.sdpMLineIndex,
    }


def candidate_from_dict(data: Dict[str, Any]) -> Optional[RTCIceCandidate]:
    """Parse a browser-style candidate. None means end-of-candidates."""
    sdp = data.get('candidate') or ''
    if sdp.startswith('candidate:'):
        sdp = sdp[len('candidate:'):]
    if not sdp:
        return None

    candidate = candidate_from_sdp(sdp)
    candidate.sdpMid = data.get('sdpMid')
    candidate.sdpMLineIndex = data.get('sdpMLineIndex')
    return candidate


class AiortcTransport(LoggerMixin):
    """Creates and drives aiortc peer connections.

    Every failure reported by aiortc while applying a description or a
    candidate is raised as ``NegotiationError``.
    """

    def __init__(self, rtc_config: Optional[RTCConfiguration] = None):
        super().__init__()
        self.rtc_config = rtc_config

    def create_connection(self, peer_id: int,
                          on_local_candidate: Callable[[Dict[str, Any]], Any],
                          on_remote_channel: Callable[[RTCDataChannel], Any],
                          on_failed: Callable[[], Any]) -> RTCPeerConnection:
        pc = RTCPeerConnection(configuration=self.rtc_config)

        @pc.on("icecandidate")
        def on_ice_candidate(candidate):
            # aiortc bundles gathered candidates into the SDP; trickled ones
            # are forwarded when an implementation emits them
            if candidate is not None:
                on_local_candidate(candidate_to_dict(candidate))

        @pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel):
            on_remote_channel(channel)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            debug_log(f"Connection state changed", {
                "peer_id": peer_id,
                "connection_state": pc.connectionState,
                "timestamp": datetime.datetime.now().isoformat()
            }, "DEBUG")
            if pc.connectionState == "failed":
                result = on_failed()
                if asyncio.iscoroutine(result):
                    await result

        return pc

    def create_data_channel(self, pc: RTCPeerConnection, label: str = CHANNEL_LABEL) -> RTCDataChannel:
        return pc.createDataChannel(label)

    async def create_offer(self, pc: RTCPeerConnection) -> Dict[str, str]:
        try:
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
        except Exception as e:
            raise NegotiationError("Failed to create offer", {"error": str(e)}) from e
        return {"type": pc.localDescription.type, "sdp": pc.localDescription.sdp}

    async def create_answer(self, pc: RTCPeerConnection) -> Dict[str, str]:
        try:
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        except Exception as e:
            raise NegotiationError("Failed to create answer", {"error": str(e)}) from e
        return {"type": pc.localDescription.type, "sdp": pc.localDescription.sdp}

    async def apply_remote_description(self, pc: RTCPeerConnection, description: Dict[str, str]):
        try:
            await pc.setRemoteDescription(RTCSessionDescription(
                sdp=description["sdp"],
                type=description["type"]
            ))
        except Exception as e:
            raise NegotiationError("Error setting remote description", {
                "type": description.get("type"),
                "error": str(e)
            }) from e

    async def add_candidate(self, pc: RTCPeerConnection, candidate: Dict[str, Any]):
        try:
            ice_candidate = candidate_from_dict(candidate)
            if ice_candidate is None:
                return
            await pc.addIceCandidate(ice_candidate)
        except Exception as e:
            raise NegotiationError("Error adding received ice candidate", {"error": str(e)}) from e

    async def close(self, pc: RTCPeerConnection):
        await pc.close()
