# facecall/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the relay and where things live.
    """
    return {
        "message": "facecall signaling relay",
        "version": "1.0",
        "architecture": "peer-to-peer media + websocket signaling relay",
        "features": ["rooms", "webrtc_signaling", "emotion_relay"],
        "endpoints": {
            "websocket": "/ws",
            "health": "/health",
            "metrics": "/metrics",
            "static": "/static",
            "models": "/models",
        },
    }
