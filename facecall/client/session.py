# facecall/client/session.py
from __future__ import annotations

import asyncio
import logging
import random
import string
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from facecall.client.channel import SignalingChannel
from facecall.client.emotions import (
    CancellationToken,
    EmotionDetector,
    Emotions,
    run_inference_loop,
)
from facecall.client.media import LocalMedia
from facecall.client.peer import PeerNegotiation, PeerState
from facecall.core.config import settings
from facecall.core.errors import MediaAcquisitionError, NegotiationError
from facecall.models.messages import (
    Connected,
    ErrorMessage,
    InboundEvent,
    ParticipantCount,
    RelayedEmotions,
    RelayedSignal,
    UserConnected,
    UserDisconnected,
)

logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_room_id(length: int = 5) -> str:
    return "".join(random.choices(ROOM_ID_ALPHABET, k=length))


class SessionController:
    """
    One user's side of a call.

    Joins or creates a room through the relay, owns the local media for the
    duration of the call, drives a ``PeerNegotiation`` from relay events and
    streams local emotion scores to the room.

    Everything user-facing goes through callbacks so the controller can sit
    behind any front end (a CLI, a test, a GUI):

        alert(text)                     problems the user must act on
        on_remote_track(track | None)   remote media appeared / went away
        on_local_emotions(scores)       local inference result
        on_remote_emotions(scores)      scores relayed from the other side
        on_participant_count(n)         room size as reported by the relay
        on_peer_state(state)            negotiation state changes
        on_emotions_unavailable()       emotion model could not be used
    """

    def __init__(
        self,
        channel: SignalingChannel,
        media: Optional[LocalMedia] = None,
        detector: Optional[EmotionDetector] = None,
        ice_servers: Optional[List[str]] = None,
        alert: Optional[Callable[[str], None]] = None,
        on_remote_track: Optional[Callable[[Any], None]] = None,
        on_local_emotions: Optional[Callable[[Emotions], None]] = None,
        on_remote_emotions: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_participant_count: Optional[Callable[[int], None]] = None,
        on_peer_state: Optional[Callable[[PeerState], None]] = None,
        on_emotions_unavailable: Optional[Callable[[], None]] = None,
        peer_factory: Callable[..., PeerNegotiation] = PeerNegotiation,
        frame_interval: Optional[float] = None,
    ) -> None:
        self.channel = channel
        self.media = media if media is not None else LocalMedia()
        self.detector = detector
        self.ice_servers = ice_servers
        self.alert = alert or (lambda text: logger.warning("ALERT: %s", text))
        self.on_remote_track = on_remote_track
        self.on_local_emotions = on_local_emotions
        self.on_remote_emotions = on_remote_emotions
        self.on_participant_count = on_participant_count
        self.on_peer_state = on_peer_state
        self.on_emotions_unavailable = on_emotions_unavailable
        self._peer_factory = peer_factory
        self.frame_interval = frame_interval if frame_interval is not None else settings.EMOTION_FRAME_INTERVAL

        self.participant_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.peer: Optional[PeerNegotiation] = None
        self.participant_count = 0
        self.remote_track = None
        self.emotions_available = detector is not None

        self._detector_loaded = False
        self._emotion_token: Optional[CancellationToken] = None
        self._emotion_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Room lifecycle
    # ------------------------------------------------------------------

    async def create_room(self) -> Optional[str]:
        """Join a freshly generated room; returns its id, or None on failure."""
        room_id = generate_room_id()
        if await self.join_room(room_id):
            return room_id
        return None

    async def join_room(self, room_id: str) -> bool:
        room_id = (room_id or "").strip()
        if not room_id:
            self.alert("Please enter a valid Room ID")
            return False
        if self.room_id is not None:
            self.alert(f"Already in room {self.room_id}; leave it first")
            return False

        try:
            await self.media.acquire()
        except MediaAcquisitionError as e:
            logger.error("Error accessing media devices: %s", e)
            self.alert(str(e))
            return False

        self.room_id = room_id
        self.peer = self._new_peer()
        await self.channel.emit(InboundEvent.JOIN_ROOM, room_id)
        logger.info("→ Joined room %s", room_id)

        await self.start_emotion_detection()
        return True

    async def leave(self) -> None:
        """Hang up: stop inference, close the connection, release the camera."""
        if self.room_id is None:
            return
        room_id = self.room_id

        task = self._cancel_emotion_loop()
        if self.peer is not None:
            await self.peer.close()
            self.peer = None
        self.media.release()
        await self._finish_emotion_task(task)

        await self.channel.emit(InboundEvent.LEAVE_ROOM, room_id)

        self.room_id = None
        self.participant_count = 0
        self._set_remote_track(None)
        logger.info("← Left room %s", room_id)

    async def run(self) -> None:
        """Process relay messages until the channel closes."""
        async for message in self.channel.messages():
            await self.handle_message(message)

    # ------------------------------------------------------------------
    # Relay events
    # ------------------------------------------------------------------

    async def handle_message(self, message: BaseModel) -> None:
        if isinstance(message, Connected):
            self.participant_id = message.data
        elif isinstance(message, UserConnected):
            await self._on_user_connected(message.data)
        elif isinstance(message, RelayedSignal):
            await self._on_signal(message.data.signal, message.data.sender_id)
        elif isinstance(message, UserDisconnected):
            await self._on_user_disconnected(message.data)
        elif isinstance(message, ParticipantCount):
            self.participant_count = message.data
            if self.on_participant_count is not None:
                self.on_participant_count(message.data)
        elif isinstance(message, RelayedEmotions):
            if self.on_remote_emotions is not None:
                self.on_remote_emotions(message.data.emotions)
        elif isinstance(message, ErrorMessage):
            logger.warning("Relay rejected a message: %s", message.data)
        else:
            raise TypeError(f"Unhandled relay message: {type(message).__name__}")

    async def _on_user_connected(self, peer_id: str) -> None:
        logger.info("User connected: %s", peer_id)
        if self.peer is None:
            return
        try:
            await self.peer.start_offer(peer_id)
        except NegotiationError as e:
            logger.error("Error during connection: %s", e)
            self.alert("Failed to establish connection. Please try again.")

    async def _on_signal(self, envelope: Dict[str, Any], sender_id: str) -> None:
        if self.peer is None:
            logger.debug("Signal from %s outside a call, dropped", sender_id)
            return
        try:
            await self.peer.handle_signal(envelope, sender_id)
        except NegotiationError as e:
            logger.error("Error handling signal: %s", e)
            self.alert("Failed to establish connection. Please try again.")

    async def _on_user_disconnected(self, peer_id: str) -> None:
        logger.info("User disconnected: %s", peer_id)
        if self.peer is None or self.peer.remote_peer_id != peer_id:
            return
        await self.peer.close()
        self._set_remote_track(None)
        # Ready for whoever joins next
        self.peer = self._new_peer()

    # ------------------------------------------------------------------
    # Media toggles
    # ------------------------------------------------------------------

    def toggle_video(self) -> bool:
        self.media.set_video_enabled(not self.media.video_enabled)
        return self.media.video_enabled

    def toggle_audio(self) -> bool:
        self.media.set_audio_enabled(not self.media.audio_enabled)
        return self.media.audio_enabled

    # ------------------------------------------------------------------
    # Emotions
    # ------------------------------------------------------------------

    @property
    def emotion_detection_running(self) -> bool:
        return (
            self._emotion_token is not None
            and not self._emotion_token.cancelled
            and self._emotion_task is not None
            and not self._emotion_task.done()
        )

    async def start_emotion_detection(self) -> bool:
        if self.emotion_detection_running:
            return True
        if not await self._load_detector():
            return False

        track = self.media.video_tap()
        if track is None:
            return False

        self._emotion_token = CancellationToken()
        self._emotion_task = asyncio.create_task(
            run_inference_loop(
                track,
                self.detector,
                self._emotion_token,
                self._on_local_emotions,
                self.frame_interval,
            )
        )
        return True

    async def stop_emotion_detection(self) -> None:
        await self._finish_emotion_task(self._cancel_emotion_loop())

    async def toggle_emotions(self) -> bool:
        if self.emotion_detection_running:
            await self.stop_emotion_detection()
            return False
        return await self.start_emotion_detection()

    async def _load_detector(self) -> bool:
        if self.detector is None or not self.emotions_available:
            self._emotions_unavailable()
            return False
        if self._detector_loaded:
            return True
        try:
            await self.detector.load()
        except Exception as e:
            logger.error("Error loading face detection models: %s", e)
            self.emotions_available = False
            self._emotions_unavailable()
            return False
        self._detector_loaded = True
        logger.info("Face detection models loaded")
        return True

    def _emotions_unavailable(self) -> None:
        logger.warning("Emotion detection not available")
        if self.on_emotions_unavailable is not None:
            self.on_emotions_unavailable()

    def _cancel_emotion_loop(self) -> Optional[asyncio.Task]:
        task = self._emotion_task
        if self._emotion_token is not None:
            self._emotion_token.cancel()
        self._emotion_token = None
        self._emotion_task = None
        return task

    async def _finish_emotion_task(self, task: Optional[asyncio.Task], timeout: float = 1.0) -> None:
        """Give a cancelled loop ``timeout`` seconds to wind down, then cancel it."""
        if task is None:
            return
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            logger.warning("Emotion inference did not stop in %.1fs; cancelling", timeout)
            task.cancel()

    async def _on_local_emotions(self, emotions: Emotions) -> None:
        if self.on_local_emotions is not None:
            self.on_local_emotions(emotions)
        if self.room_id is not None:
            await self.channel.emit(
                InboundEvent.EMOTION_DATA,
                {"roomID": self.room_id, "emotions": emotions},
            )

    # ------------------------------------------------------------------
    # Peer plumbing
    # ------------------------------------------------------------------

    def _new_peer(self) -> PeerNegotiation:
        return self._peer_factory(
            send_signal=self._send_signal,
            local_tracks=self.media.tracks,
            ice_servers=self.ice_servers,
            on_state_change=self._on_peer_state,
            on_track=self._set_remote_track,
            on_failure=self._on_negotiation_failure,
        )

    async def _send_signal(self, envelope: Dict[str, Any]) -> None:
        if self.room_id is None:
            return
        await self.channel.emit(InboundEvent.SIGNAL, {"roomID": self.room_id, "signal": envelope})

    def _on_peer_state(self, state: PeerState) -> None:
        logger.info("Call state: %s", state.value)
        if self.on_peer_state is not None:
            self.on_peer_state(state)

    def _on_negotiation_failure(self, error: NegotiationError) -> None:
        logger.error("Negotiation failed: %s", error)
        self._set_remote_track(None)
        self.alert("Connection to peer lost. Please try again.")

    def _set_remote_track(self, track) -> None:
        if track is None and self.remote_track is None:
            return
        self.remote_track = track
        if self.on_remote_track is not None:
            self.on_remote_track(track)
