# facecall/client/__main__.py
"""
Headless call client.

    python -m facecall.client                 # create a room
    python -m facecall.client --room abcde    # join one
    python -m facecall.client --detector mypkg.faces:Detector
"""
from __future__ import annotations

import argparse
import asyncio

from facecall.client.channel import SignalingChannel
from facecall.client.emotions import load_detector, top_emotions
from facecall.client.session import SessionController
from facecall.core.config import settings
from facecall.core.logging import setup_logging, get_logger

logger = get_logger("facecall.client")


def _format_emotions(emotions) -> str:
    return ", ".join(f"{label} {round(score * 100)}%" for label, score in top_emotions(emotions))


async def main(url: str, room_id: str | None, detector_path: str = "") -> int:
    detector = None
    if detector_path:
        try:
            detector = load_detector(detector_path)
        except (ImportError, AttributeError, ValueError) as e:
            logger.error("Cannot load emotion detector %s: %s", detector_path, e)

    channel = SignalingChannel()
    await channel.connect(url)

    session = SessionController(
        channel,
        detector=detector,
        on_local_emotions=lambda emotions: print(f"[~] You: {_format_emotions(emotions)}"),
        alert=lambda text: print(f"[!] {text}"),
        on_participant_count=lambda n: print(f"[*] Participants: {n}"),
        on_peer_state=lambda state: print(f"[*] Call {state.value}"),
        on_remote_emotions=lambda emotions: print(f"[~] Remote: {_format_emotions(emotions)}"),
    )
    listener = asyncio.create_task(session.run())

    try:
        if room_id:
            joined = await session.join_room(room_id)
        else:
            room_id = await session.create_room()
            joined = room_id is not None
        if not joined:
            return 1

        print(f"[+] Your Room ID is: {room_id}")
        await listener
    finally:
        await session.leave()
        await channel.close()
        listener.cancel()
    return 0


def cli() -> None:
    parser = argparse.ArgumentParser(description="facecall headless client")
    parser.add_argument("--url", default=settings.SIGNALING_URL, help="relay websocket url")
    parser.add_argument("--room", default=None, help="room id to join (omit to create one)")
    parser.add_argument(
        "--detector",
        default=settings.EMOTION_DETECTOR,
        help="emotion detector as module:Class (omit to run without emotions)",
    )
    args = parser.parse_args()

    setup_logging()
    try:
        raise SystemExit(asyncio.run(main(args.url, args.room, args.detector)))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    cli()
