# facecall/models/messages.py
"""
Message catalogue for the relay WebSocket.

Every frame on the wire is a JSON object ``{"event": <name>, "data": <payload>}``.
Inbound (client -> server) and outbound (server -> client) kinds are closed sets;
each kind is a pydantic model and the two unions are discriminated on ``event``.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from facecall.core.errors import ProtocolError


class InboundEvent(str, Enum):
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    SIGNAL = "signal"
    EMOTION_DATA = "emotion-data"


class OutboundEvent(str, Enum):
    CONNECTED = "connected"
    SIGNAL = "signal"
    USER_CONNECTED = "user-connected"
    USER_DISCONNECTED = "user-disconnected"
    PARTICIPANT_COUNT = "participant-count"
    EMOTION_DATA = "emotion-data"
    ERROR = "error"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# CLIENT -> SERVER
# ============================================================================

class SignalRequest(_Payload):
    room_id: str = Field(alias="roomID", min_length=1)
    # Opaque to the relay: offer, answer or ICE candidate
    signal: Dict[str, Any]


class EmotionRequest(_Payload):
    room_id: str = Field(alias="roomID", min_length=1)
    emotions: Dict[str, Any]


class JoinRoom(BaseModel):
    event: Literal["join-room"] = "join-room"
    data: str = Field(min_length=1)

    @property
    def room_id(self) -> str:
        return self.data


class LeaveRoom(BaseModel):
    event: Literal["leave-room"] = "leave-room"
    data: str = Field(min_length=1)

    @property
    def room_id(self) -> str:
        return self.data


class SendSignal(BaseModel):
    event: Literal["signal"] = "signal"
    data: SignalRequest


class SendEmotions(BaseModel):
    event: Literal["emotion-data"] = "emotion-data"
    data: EmotionRequest


InboundMessage = Annotated[
    Union[JoinRoom, LeaveRoom, SendSignal, SendEmotions],
    Field(discriminator="event"),
]


# ============================================================================
# SERVER -> CLIENT
# ============================================================================

class SignalDelivery(_Payload):
    signal: Dict[str, Any]
    sender_id: str = Field(alias="senderID")


class EmotionDelivery(_Payload):
    emotions: Dict[str, Any]


class Connected(BaseModel):
    event: Literal["connected"] = "connected"
    data: str


class UserConnected(BaseModel):
    event: Literal["user-connected"] = "user-connected"
    data: str


class UserDisconnected(BaseModel):
    event: Literal["user-disconnected"] = "user-disconnected"
    data: str


class ParticipantCount(BaseModel):
    event: Literal["participant-count"] = "participant-count"
    data: int


class RelayedSignal(BaseModel):
    event: Literal["signal"] = "signal"
    data: SignalDelivery


class RelayedEmotions(BaseModel):
    event: Literal["emotion-data"] = "emotion-data"
    data: EmotionDelivery


class ErrorMessage(BaseModel):
    event: Literal["error"] = "error"
    data: str


OutboundMessage = Annotated[
    Union[
        Connected,
        UserConnected,
        UserDisconnected,
        ParticipantCount,
        RelayedSignal,
        RelayedEmotions,
        ErrorMessage,
    ],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)
_outbound_adapter: TypeAdapter = TypeAdapter(OutboundMessage)


def _parse(adapter: TypeAdapter, raw: str | bytes | Dict[str, Any]):
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ProtocolError("Invalid JSON") from e
    try:
        return adapter.validate_python(raw)
    except ValidationError as e:
        event = raw.get("event") if isinstance(raw, dict) else None
        raise ProtocolError(f"Invalid message: {event!r}") from e


def parse_inbound(raw: str | bytes | Dict[str, Any]):
    """Parse a client frame into one of the ``InboundMessage`` models."""
    return _parse(_inbound_adapter, raw)


def parse_outbound(raw: str | bytes | Dict[str, Any]):
    """Parse a relay frame into one of the ``OutboundMessage`` models."""
    return _parse(_outbound_adapter, raw)


def to_frame(message: BaseModel) -> Dict[str, Any]:
    """Wire representation of a message (aliases applied, JSON-safe)."""
    return message.model_dump(by_alias=True, mode="json")
