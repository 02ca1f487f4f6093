# facecall/core/config.py
import os
from typing import List
from dotenv import load_dotenv

DEFAULT_ICE_SERVERS = (
    "stun:stun.l.google.com:19302,"
    "stun:stun1.l.google.com:19302,"
    "stun:stun.cloudflare.com:3478"
)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """
    Setup environment variables.
        - PORT / HOST where the relay listens
        - STATIC_DIR / MODELS_DIR the client bundle and face-expression model files
        - ICE_SERVERS comma separated STUN urls handed to every peer connection
        - SIGNALING_URL default relay endpoint for the headless client
        - VIDEO_* / AUDIO_* capture devices for the headless client
        - EMOTION_DETECTOR "module:Class" of the face-expression detector to load
    """

    # Load environment variables from the .env file
    load_dotenv()

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))

    STATIC_DIR: str = os.getenv("STATIC_DIR", "client")
    MODELS_DIR: str = os.getenv("MODELS_DIR", os.path.join("client", "models"))

    ICE_SERVERS: List[str] = _split_csv(os.getenv("ICE_SERVERS", DEFAULT_ICE_SERVERS))

    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:3000/ws")

    VIDEO_DEVICE: str = os.getenv("VIDEO_DEVICE", "/dev/video0")
    VIDEO_FORMAT: str = os.getenv("VIDEO_FORMAT", "v4l2")
    AUDIO_DEVICE: str = os.getenv("AUDIO_DEVICE", "default")
    AUDIO_FORMAT: str = os.getenv("AUDIO_FORMAT", "pulse")

    EMOTION_FRAME_INTERVAL: float = float(os.getenv("EMOTION_FRAME_INTERVAL", str(1 / 30)))
    EMOTION_DETECTOR: str = os.getenv("EMOTION_DETECTOR", "")

settings = Settings()
