"""
Peer transport used by a PeerSession.

`AiortcTransport` wraps one aiortc `RTCPeerConnection` behind the small
capability set the negotiation state machine needs:

    await create_offer() / create_answer()  -> {"sdp", "type"}
    await apply_remote_description(description)
    await add_candidate(candidate)
    await close()
    events: "candidate" (dict), "track" (MediaStreamTrack),
            "connectionstatechange" (str)

Tests inject a fake emitter exposing the same methods and events.
"""
import logging

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp
from pyee import EventEmitter

from .config import STUN_URLS
from .errors import MalformedNegotiationPayload
from .messages import description_to_dict

logger = logging.getLogger(__name__)

STUN = RTCConfiguration([RTCIceServer(url) for url in STUN_URLS])


class AiortcTransport(EventEmitter):
    def __init__(self, local_tracks=(), configuration: RTCConfiguration = STUN):
        super().__init__()
        self.pc = RTCPeerConnection(configuration)
        for track in local_tracks:
            self.pc.addTrack(track)

        @self.pc.on("track")
        def _on_track(track):
            self.emit("track", track)

        @self.pc.on("connectionstatechange")
        def _on_state():
            self.emit("connectionstatechange", self.pc.connectionState)

    async def create_offer(self) -> dict:
        # aiortc gathers candidates during setLocalDescription and embeds
        # them in the SDP, so no "candidate" events are emitted locally.
        await self.pc.setLocalDescription(await self.pc.createOffer())
        return description_to_dict(self.pc.localDescription)

    async def create_answer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        return description_to_dict(self.pc.localDescription)

    async def apply_remote_description(self, description) -> None:
        try:
            remote = RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedNegotiationPayload(f"bad session description: {e}") from e
        try:
            await self.pc.setRemoteDescription(remote)
        except ValueError as e:
            raise MalformedNegotiationPayload(f"unusable session description: {e}") from e

    async def add_candidate(self, candidate) -> None:
        try:
            line = candidate["candidate"]
            if not line:
                return  # end-of-candidates marker
            ice = candidate_from_sdp(line.split(":", 1)[1] if line.startswith("candidate:") else line)
            ice.sdpMid = candidate.get("sdpMid")
            ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise MalformedNegotiationPayload(f"bad ICE candidate: {e}") from e
        try:
            await self.pc.addIceCandidate(ice)
        except ValueError as e:
            raise MalformedNegotiationPayload(f"unusable ICE candidate: {e}") from e

    async def close(self) -> None:
        await self.pc.close()
