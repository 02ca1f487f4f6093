# facecall/services/relay.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol
import logging

from pydantic import BaseModel

from facecall.models.messages import (
    EmotionDelivery,
    EmotionRequest,
    JoinRoom,
    LeaveRoom,
    ParticipantCount,
    RelayedEmotions,
    RelayedSignal,
    SendEmotions,
    SendSignal,
    SignalDelivery,
    SignalRequest,
    UserConnected,
    UserDisconnected,
)
from facecall.services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send(self, participant_id: str, message: BaseModel) -> bool: ...


@dataclass
class RelayStats:
    messages_handled: int = 0
    signals_relayed: int = 0
    emotions_relayed: int = 0
    deliveries_dropped: int = 0

# ============================================================================
# SIGNALING RELAY
# ============================================================================

class Relay:
    """
    Routes signaling envelopes and emotion payloads between members of a room.

    The relay never looks inside an envelope: offers, answers and ICE
    candidates are forwarded as-is, tagged with the sender's id. Every
    broadcast goes to all *other* members of the room, except the
    participant count which every member (sender included) receives so
    that all clients show the same number.

    Routing is fire-and-forget. Signals and emotion payloads go to whoever
    is in the room they name, whether or not the sender is a member; a
    message for a room with nobody else in it is dropped silently.

    Each handler updates the registry synchronously before its first await,
    and takes a snapshot of the recipients before sending.
    """

    def __init__(self, registry: RoomRegistry, sender: MessageSender) -> None:
        self.registry = registry
        self.sender = sender
        self.stats = RelayStats()

    async def handle(self, participant_id: str, message: BaseModel) -> None:
        """Dispatch one inbound message from ``participant_id``."""
        self.stats.messages_handled += 1

        if isinstance(message, JoinRoom):
            await self.join_room(participant_id, message.room_id)
        elif isinstance(message, LeaveRoom):
            await self.leave_room(participant_id, message.room_id)
        elif isinstance(message, SendSignal):
            await self.forward_signal(participant_id, message.data)
        elif isinstance(message, SendEmotions):
            await self.forward_emotions(participant_id, message.data)
        else:
            raise TypeError(f"Unhandled inbound message: {type(message).__name__}")

    async def join_room(self, participant_id: str, room_id: str) -> None:
        previous = self.registry.join(participant_id, room_id)
        members = self.registry.members_of(room_id)
        logger.info("→ %s joined '%s' (%d members)", participant_id, room_id, len(members))

        if previous is not None:
            await self._announce_departure(participant_id, previous)

        others = members - {participant_id}
        await self._broadcast(others, UserConnected(data=participant_id))
        await self._broadcast(members, ParticipantCount(data=len(members)))

    async def leave_room(self, participant_id: str, room_id: str) -> None:
        if not self.registry.leave(participant_id, room_id):
            logger.debug("[routing] %s is not in '%s', leave ignored", participant_id, room_id)
            return
        logger.info("← %s left '%s'", participant_id, room_id)
        await self._announce_departure(participant_id, room_id)

    async def forward_signal(self, participant_id: str, request: SignalRequest) -> None:
        recipients = self._others_in(participant_id, request.room_id)
        if not recipients:
            return
        delivery = RelayedSignal(data=SignalDelivery(signal=request.signal, sender_id=participant_id))
        logger.debug("Signal %s from %s to %d peer(s)", request.signal.get("type", "candidate"), participant_id, len(recipients))
        self.stats.signals_relayed += await self._broadcast(recipients, delivery)

    async def forward_emotions(self, participant_id: str, request: EmotionRequest) -> None:
        recipients = self._others_in(participant_id, request.room_id)
        if not recipients:
            return
        delivery = RelayedEmotions(data=EmotionDelivery(emotions=request.emotions))
        self.stats.emotions_relayed += await self._broadcast(recipients, delivery)

    async def disconnect(self, participant_id: str) -> None:
        """Remove a closed connection from its room and tell whoever is left."""
        room_id = self.registry.discard(participant_id)
        if room_id is None:
            return
        await self._announce_departure(participant_id, room_id)

    async def _announce_departure(self, participant_id: str, room_id: str) -> None:
        remaining = self.registry.members_of(room_id)
        if not remaining:
            # Room already deleted by the registry
            return
        await self._broadcast(remaining, UserDisconnected(data=participant_id))
        await self._broadcast(remaining, ParticipantCount(data=len(remaining)))

    def _others_in(self, participant_id: str, room_id: str) -> frozenset:
        others = self.registry.members_of(room_id) - {participant_id}
        if not others:
            logger.debug("[routing] Dropped message from %s: nobody else in '%s'", participant_id, room_id)
            self.stats.deliveries_dropped += 1
        return others

    async def _broadcast(self, recipients: Iterable[str], message: BaseModel) -> int:
        delivered = 0
        for recipient in sorted(recipients):
            if await self.sender.send(recipient, message):
                delivered += 1
            else:
                self.stats.deliveries_dropped += 1
        return delivered
