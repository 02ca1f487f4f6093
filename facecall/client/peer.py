# facecall/client/peer.py
"""
Negotiation of the single WebRTC connection to the remote peer.

States::

    IDLE --(peer joined / offer received)--> CONNECTING
    CONNECTING --(transport reports "connected")--> CONNECTED
    any --(close())--> CLOSED

The transport decides when the call is connected; this class only listens
for aiortc's ``connectionstatechange`` and reports it. A failed offer/answer
exchange abandons the connection object and goes back to IDLE, nothing is
retried.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from facecall.core.config import settings
from facecall.core.errors import NegotiationError

logger = logging.getLogger(__name__)

SignalSender = Callable[[Dict[str, Any]], Awaitable[None]]


class PeerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


def description_to_dict(description: RTCSessionDescription) -> Dict[str, Any]:
    return {"type": description.type, "sdp": description.sdp}


def candidate_from_dict(envelope: Dict[str, Any]):
    """Browser-style ``RTCIceCandidateInit`` -> aiortc ``RTCIceCandidate``."""
    line = envelope["candidate"]
    if line.startswith("candidate:"):
        line = line.split(":", 1)[1]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = envelope.get("sdpMid")
    candidate.sdpMLineIndex = envelope.get("sdpMLineIndex")
    return candidate


class PeerNegotiation:
    """
    One call's peer connection and its offer/answer exchange.

    Args:
        send_signal: coroutine that ships an envelope to the relay
        local_tracks: returns the local tracks to attach (called once per
            connection object)
        ice_servers: STUN urls for the connection configuration
        on_state_change: called with the new ``PeerState``
        on_track: called with each remote ``MediaStreamTrack``
        on_failure: called with a ``NegotiationError`` when the transport
            itself reports failure
        pc_factory: builds the connection object (``RTCPeerConnection``)
    """

    def __init__(
        self,
        send_signal: SignalSender,
        local_tracks: Optional[Callable[[], Sequence[MediaStreamTrack]]] = None,
        ice_servers: Optional[List[str]] = None,
        on_state_change: Optional[Callable[[PeerState], None]] = None,
        on_track: Optional[Callable[[MediaStreamTrack], None]] = None,
        on_failure: Optional[Callable[[NegotiationError], None]] = None,
        pc_factory: Callable[..., Any] = RTCPeerConnection,
    ) -> None:
        self.send_signal = send_signal
        self.local_tracks = local_tracks or (lambda: [])
        self.ice_servers = list(ice_servers if ice_servers is not None else settings.ICE_SERVERS)
        self.on_state_change = on_state_change
        self.on_track = on_track
        self.on_failure = on_failure
        self._pc_factory = pc_factory

        self.state = PeerState.IDLE
        self.pc = None
        self.remote_peer_id: Optional[str] = None
        self._tracks_attached = False

    # ------------------------------------------------------------------
    # Offering side
    # ------------------------------------------------------------------

    async def start_offer(self, peer_id: str) -> None:
        """A peer joined the room: open a connection and send it an offer."""
        if self.state == PeerState.CLOSED:
            logger.warning("Negotiation closed, not offering to %s", peer_id)
            return
        if self.pc is not None:
            logger.info("Replacing connection to %s with a new one to %s", self.remote_peer_id, peer_id)
            await self._abandon()

        self._open(peer_id)
        try:
            self._attach_local_tracks()
            offer = await self.pc.createOffer()
            await self.pc.setLocalDescription(offer)
            await self.send_signal(description_to_dict(self.pc.localDescription))
        except Exception as e:
            await self._abandon()
            raise NegotiationError(f"Could not create offer for {peer_id}: {e}") from e

        logger.info("📤 Offer sent to %s", peer_id)

    # ------------------------------------------------------------------
    # Inbound envelopes
    # ------------------------------------------------------------------

    async def handle_signal(self, envelope: Dict[str, Any], sender_id: str) -> None:
        kind = envelope.get("type")
        if kind == "offer":
            await self.handle_offer(envelope, sender_id)
        elif kind == "answer":
            await self.handle_answer(envelope)
        elif "candidate" in envelope:
            await self.add_candidate(envelope)
        else:
            logger.warning("Unknown envelope from %s dropped", sender_id)

    async def handle_offer(self, envelope: Dict[str, Any], sender_id: str) -> None:
        """Answering side: accept the remote offer and reply with an answer."""
        if self.state == PeerState.CLOSED:
            return
        if self.pc is None:
            self._open(sender_id)
        else:
            # Single connection: a later offer renegotiates it
            self.remote_peer_id = sender_id

        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=envelope["sdp"], type="offer")
            )
            self._attach_local_tracks()
            answer = await self.pc.createAnswer()
            await self.pc.setLocalDescription(answer)
            await self.send_signal(description_to_dict(self.pc.localDescription))
        except Exception as e:
            await self._abandon()
            raise NegotiationError(f"Could not answer offer from {sender_id}: {e}") from e

        logger.info("📤 Answer sent to %s", sender_id)

    async def handle_answer(self, envelope: Dict[str, Any]) -> None:
        if self.pc is None:
            logger.warning("Answer received without a connection, dropped")
            return
        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=envelope["sdp"], type="answer")
            )
        except Exception as e:
            await self._abandon()
            raise NegotiationError(f"Could not apply answer: {e}") from e

    async def add_candidate(self, envelope: Dict[str, Any]) -> bool:
        """
        Apply a remote ICE candidate.

        Returns:
            True if the candidate reached the connection object. Candidates
            that arrive before the connection exists are dropped.
        """
        if self.pc is None:
            logger.warning("ICE candidate received before the connection exists, dropped")
            return False
        if not envelope.get("candidate"):
            # End-of-candidates marker
            return False
        try:
            await self.pc.addIceCandidate(candidate_from_dict(envelope))
        except Exception as e:
            logger.error("Error adding ICE candidate: %s", e)
            return False
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Tear the connection down for good."""
        if self.state == PeerState.CLOSED:
            return
        await self._close_pc()
        self._set_state(PeerState.CLOSED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open(self, peer_id: str) -> None:
        config = RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in self.ice_servers])
        pc = self._pc_factory(configuration=config)
        self.pc = pc
        self.remote_peer_id = peer_id
        self._tracks_attached = False

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            if pc is not self.pc:
                return
            logger.info("Connection state: %s", pc.connectionState)
            if pc.connectionState == "connected" and self.state == PeerState.CONNECTING:
                self._set_state(PeerState.CONNECTED)
            elif pc.connectionState == "failed":
                await self._abandon()
                if self.on_failure is not None:
                    self.on_failure(NegotiationError("Connection to peer failed"))

        @pc.on("track")
        def on_track(track):
            logger.info("Remote %s track received", track.kind)
            if self.on_track is not None:
                self.on_track(track)

        self._set_state(PeerState.CONNECTING)

    def _attach_local_tracks(self) -> None:
        if self._tracks_attached:
            return
        for track in self.local_tracks():
            self.pc.addTrack(track)
        self._tracks_attached = True

    async def _close_pc(self) -> None:
        pc, self.pc = self.pc, None
        self._tracks_attached = False
        if pc is not None:
            await pc.close()

    async def _abandon(self) -> None:
        await self._close_pc()
        self.remote_peer_id = None
        if self.state != PeerState.CLOSED:
            self._set_state(PeerState.IDLE)

    def _set_state(self, state: PeerState) -> None:
        if state == self.state:
            return
        logger.debug("Peer negotiation %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)
