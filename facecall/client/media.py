# facecall/client/media.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay
from av import AudioFrame, VideoFrame

from facecall.core.config import settings
from facecall.core.errors import MediaAcquisitionError, MediaError

logger = logging.getLogger(__name__)


def _blank_copy(frame):
    """Black video / silent audio frame with the same shape and timing."""
    if isinstance(frame, VideoFrame):
        blank = VideoFrame(frame.width, frame.height, frame.format.name)
        chroma = 128 if frame.format.name.startswith("yuv") else 0
        for index, plane in enumerate(blank.planes):
            plane.update(bytes([chroma if index > 0 else 0]) * plane.buffer_size)
    else:
        blank = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        blank.sample_rate = frame.sample_rate
        for plane in blank.planes:
            plane.update(bytes(plane.buffer_size))
    blank.pts = frame.pts
    if frame.time_base is not None:
        blank.time_base = frame.time_base
    return blank


class SwitchableTrack(MediaStreamTrack):
    """Passes frames through, or blanks them while ``enabled`` is False."""

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return _blank_copy(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


class LocalMedia:
    """
    Camera and microphone of this client.

    Only one acquisition may be active at a time; ``release()`` before
    acquiring again. Tracks handed to peer connections and the video tap
    used for emotion inference are all fanned out from the same capture
    through aiortc's ``MediaRelay``.
    """

    def __init__(self, player_factory: Callable[..., Any] = MediaPlayer) -> None:
        self._player_factory = player_factory
        self._relay = MediaRelay()
        self._players: List[Any] = []
        self._video: Optional[MediaStreamTrack] = None
        self._audio: Optional[MediaStreamTrack] = None
        self._video_out: Optional[SwitchableTrack] = None
        self._audio_out: Optional[SwitchableTrack] = None

    @property
    def active(self) -> bool:
        return bool(self._players)

    async def acquire(self) -> None:
        """
        Open camera and microphone.

        Raises:
            MediaError: media is already acquired
            MediaAcquisitionError: a device could not be opened
        """
        if self.active:
            raise MediaError("Local media already acquired; release it first")

        try:
            video_player = await asyncio.to_thread(
                self._player_factory,
                settings.VIDEO_DEVICE,
                format=settings.VIDEO_FORMAT,
                options={"framerate": "30", "video_size": "640x480"},
            )
            self._players.append(video_player)
            audio_player = await asyncio.to_thread(
                self._player_factory,
                settings.AUDIO_DEVICE,
                format=settings.AUDIO_FORMAT,
            )
            self._players.append(audio_player)
        except Exception as e:
            self.release()
            raise MediaAcquisitionError(f"Failed to access camera and microphone: {e}") from e

        self._video = video_player.video
        self._audio = audio_player.audio
        if self._video is None:
            self.release()
            raise MediaAcquisitionError(f"No video stream on {settings.VIDEO_DEVICE}")

        self._video_out = SwitchableTrack(self._relay.subscribe(self._video))
        if self._audio is not None:
            self._audio_out = SwitchableTrack(self._relay.subscribe(self._audio))
        logger.info("✓ Local media acquired (audio: %s)", self._audio is not None)

    def tracks(self) -> List[MediaStreamTrack]:
        """Fresh subscriptions for one peer connection."""
        return [
            self._relay.subscribe(track)
            for track in (self._video_out, self._audio_out)
            if track is not None
        ]

    def video_tap(self) -> Optional[MediaStreamTrack]:
        """Unswitched copy of the camera feed, for inference."""
        if self._video is None:
            return None
        return self._relay.subscribe(self._video)

    @property
    def video_enabled(self) -> bool:
        return self._video_out is not None and self._video_out.enabled

    @property
    def audio_enabled(self) -> bool:
        return self._audio_out is not None and self._audio_out.enabled

    def set_video_enabled(self, enabled: bool) -> None:
        if self._video_out is not None:
            self._video_out.enabled = enabled

    def set_audio_enabled(self, enabled: bool) -> None:
        if self._audio_out is not None:
            self._audio_out.enabled = enabled

    def release(self) -> None:
        """Stop every capture track. Safe to call more than once."""
        for track in (self._video_out, self._audio_out, self._video, self._audio):
            if track is not None:
                track.stop()
        for player in self._players:
            for track in (player.video, player.audio):
                if track is not None:
                    track.stop()
        if self._players:
            logger.info("Local media released")
        self._players = []
        self._video = self._audio = None
        self._video_out = self._audio_out = None
