# facecall/client/channel.py
"""Client end of the relay WebSocket."""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from facecall.core.errors import ProtocolError
from facecall.models.messages import InboundEvent, parse_outbound

logger = logging.getLogger(__name__)


class SignalingChannel:
    """
    Persistent bidirectional message channel to the relay.

    Usage:
        channel = SignalingChannel()
        await channel.connect("ws://localhost:3000/ws")
        await channel.emit(InboundEvent.JOIN_ROOM, "abcde")
        async for message in channel.messages():
            ...
    """

    def __init__(self) -> None:
        self.ws = None

    async def connect(self, url: str) -> None:
        self.ws = await websockets.connect(url)
        logger.info("✓ Connected to relay at %s", url)

    @property
    def connected(self) -> bool:
        return self.ws is not None

    async def emit(self, event: InboundEvent, data: Any) -> None:
        """Send one frame. Silently skipped when the channel is not open."""
        if self.ws is None:
            logger.warning("Channel closed, dropping %s", event.value)
            return
        try:
            await self.ws.send(json.dumps({"event": event.value, "data": data}))
        except ConnectionClosed:
            logger.warning("Relay connection closed while sending %s", event.value)

    async def messages(self) -> AsyncIterator[Any]:
        """Yield parsed relay messages until the connection closes."""
        if self.ws is None:
            return
        try:
            async for raw in self.ws:
                try:
                    yield parse_outbound(raw)
                except ProtocolError as e:
                    logger.warning("Ignoring relay frame: %s", e)
        except ConnectionClosed as e:
            logger.info("Relay connection closed: %s", e)

    async def close(self) -> None:
        ws: Optional[Any] = self.ws
        self.ws = None
        if ws is not None:
            await ws.close()
