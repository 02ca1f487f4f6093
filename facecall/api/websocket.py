# facecall/api/websocket.py

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from facecall.core.errors import ProtocolError
from facecall.models.messages import ErrorMessage, parse_inbound, to_frame

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Signaling channel, one per browser (or headless client).

    Protocol:
    =========
    Every frame is {"event": <name>, "data": <payload>}, sent as a text or
    binary (UTF-8 JSON) WebSocket message.

    Client -> Server:
    -----------------
    Join Room:
        {"event": "join-room", "data": "abcde"}
        Others receive: {"event": "user-connected", "data": "<participantID>"}
        Everyone receives: {"event": "participant-count", "data": 2}

    Leave Room:
        {"event": "leave-room", "data": "abcde"}

    Signal (offer / answer / ICE candidate, opaque):
        {"event": "signal", "data": {"roomID": "abcde", "signal": {...}}}
        Others receive: {"event": "signal", "data": {"signal": {...}, "senderID": "..."}}

    Emotions:
        {"event": "emotion-data", "data": {"roomID": "abcde", "emotions": {"happy": 0.9}}}
        Others receive: {"event": "emotion-data", "data": {"emotions": {"happy": 0.9}}}

    Server -> Client only:
    ----------------------
    On connect:   {"event": "connected", "data": "<your participantID>"}
    Bad frame:    {"event": "error", "data": "..."}
    Peer gone:    {"event": "user-disconnected", "data": "<participantID>"}

    Lifecycle:
    ==========
    1. Connection accepted, participant id assigned and announced
    2. Client joins a room (joining another room leaves the first)
    3. Frames are relayed to the other members of the room
    4. On disconnect, removed from its room and the others are notified
    """
    connections = websocket.app.state.connection_manager
    relay = websocket.app.state.relay

    participant_id = await connections.connect(websocket)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            # Text and binary frames carry the same JSON envelope
            data = frame.get("text")
            if data is None:
                data = frame.get("bytes")

            try:
                message = parse_inbound(data)
            except ProtocolError as e:
                logger.warning("Rejected frame from %s: %s", participant_id, e)
                await websocket.send_json(to_frame(ErrorMessage(data=str(e))))
                continue

            logger.debug("Websocket input from %s: %s", participant_id, message.event)
            await relay.handle(participant_id, message)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        connections.disconnect(participant_id)
        await relay.disconnect(participant_id)
