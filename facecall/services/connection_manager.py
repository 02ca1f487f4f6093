# facecall/services/connection_manager.py

from __future__ import annotations

from typing import Dict
import logging
import uuid

from fastapi import WebSocket
from pydantic import BaseModel

from facecall.models.messages import Connected, to_frame

logger = logging.getLogger(__name__)

# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Owns the live WebSocket connections.

    Each accepted connection gets a participant id (random hex, valid only for
    the lifetime of that connection). The relay only ever speaks in participant
    ids; this class turns them back into sockets.

    Data Structures:
        connections: Maps participant_id -> WebSocket
                     Example: {"3f2c...": websocket1}

    Delivery is best-effort: sending to an id that is gone, or to a socket
    that fails mid-send, is logged and reported as not delivered. The failed
    connection is cleaned up by its own receive loop when it disconnects.
    """

    def __init__(self) -> None:
        self.connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept a new WebSocket connection and announce its participant id.

        Returns:
            The participant id assigned to this connection.
        """
        await websocket.accept()

        participant_id = uuid.uuid4().hex
        self.connections[participant_id] = websocket

        await websocket.send_json(to_frame(Connected(data=participant_id)))

        logger.info("✓ Participant %s connected. Total: %d", participant_id, len(self.connections))
        return participant_id

    def disconnect(self, participant_id: str) -> None:
        if self.connections.pop(participant_id, None) is not None:
            logger.info("✗ Participant %s disconnected. Total: %d", participant_id, len(self.connections))

    async def send(self, participant_id: str, message: BaseModel) -> bool:
        """
        Send one message to one participant.

        Returns:
            True if the frame was handed to the socket.
        """
        websocket = self.connections.get(participant_id)
        if websocket is None:
            logger.debug("[routing] Dropped %s: %s is not connected", message.event, participant_id)
            return False

        try:
            await websocket.send_json(to_frame(message))
        except Exception as e:
            logger.error("Send error to %s: %s", participant_id, e)
            return False
        return True
