# facecall/client/emotions.py
"""
Continuous facial-emotion inference on the local camera feed.

The face-expression model itself is an external collaborator; anything that
implements ``EmotionDetector`` can be plugged in.
"""
from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

EMOTION_LABELS: Tuple[str, ...] = (
    "neutral",
    "happy",
    "sad",
    "angry",
    "fearful",
    "disgusted",
    "surprised",
)

Emotions = Dict[str, float]


class EmotionDetector(Protocol):
    async def load(self) -> None:
        """Load model files. Raising here disables emotion features for the call."""

    async def detect(self, frame: Any) -> Optional[Emotions]:
        """Scores for the face in ``frame``, or None when no face is found."""


class CancellationToken:
    """Cooperative stop signal for the inference loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True as soon as cancelled."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self._event.is_set()


async def run_inference_loop(
    track,
    detector: EmotionDetector,
    token: CancellationToken,
    on_emotions: Callable[[Emotions], Awaitable[None]],
    frame_interval: float,
) -> None:
    """
    Read a frame, detect, report, then wait one frame interval.

    The token is checked at every iteration boundary; once cancelled no
    further frame is read. A detector error ends the loop and cancels the
    token, so the owner sees the loop as stopped.
    """
    while not token.cancelled:
        try:
            frame = await track.recv()
            emotions = await detector.detect(frame)
        except Exception as e:
            logger.error("Error detecting emotions: %s", e)
            token.cancel()
            return

        if emotions and not token.cancelled:
            await on_emotions(dict(emotions))

        if await token.wait(frame_interval):
            break

    logger.debug("Emotion inference stopped")


def top_emotions(emotions: Dict[str, float], limit: int = 3) -> List[Tuple[str, float]]:
    """Strongest emotions first, e.g. for a three-bar overlay."""
    return sorted(emotions.items(), key=lambda item: item[1], reverse=True)[:limit]


def load_detector(path: str) -> EmotionDetector:
    """
    Instantiate a detector from ``"package.module:ClassName"``.

    Raises:
        ValueError: ``path`` is not in ``module:attribute`` form
        ImportError / AttributeError: the module or class does not exist
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:Class', got {path!r}")
    module = importlib.import_module(module_name)
    detector = getattr(module, attribute)()
    logger.info("Using emotion detector %s", path)
    return detector
