# facecall/services/room_registry.py

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Set
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# ROOM REGISTRY
# ============================================================================

class RoomRegistry:
    """
    In-memory room membership.

    Keeps both directions of the membership relation so that a participant
    can be found without scanning every room on disconnect.

    Data Structures:
        rooms: Maps room_id -> Set of participant ids in that room
               Example: {"abcde": {"3f2c...", "9ab1..."}}

        participant_rooms: Maps participant id -> the one room it occupies
                           Example: {"3f2c...": "abcde"}

    Invariants:
        - A participant occupies at most one room.
        - A room exists only while it has at least one member.

    Nothing is persisted; the registry lives as long as the process (or the
    test) that owns it. All mutations are synchronous, so no locking is needed
    under a single event loop.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Set[str]] = {}
        self.participant_rooms: Dict[str, str] = {}

    def join(self, participant_id: str, room_id: str) -> Optional[str]:
        """
        Put a participant into a room, leaving any other room first.

        Args:
            participant_id: Connection-scoped id of the participant
            room_id: Room to join (created if absent)

        Returns:
            The room the participant was moved out of, or None if it was in
            no room or already in ``room_id``.
        """
        previous = self.participant_rooms.get(participant_id)
        if previous is not None and previous != room_id:
            self.leave(participant_id, previous)
        else:
            previous = None

        self.rooms.setdefault(room_id, set()).add(participant_id)
        self.participant_rooms[participant_id] = room_id

        logger.debug("%s joined room %s (%d members)", participant_id, room_id, len(self.rooms[room_id]))
        return previous

    def leave(self, participant_id: str, room_id: str) -> bool:
        """
        Remove a participant from a room, deleting the room once empty.

        Returns:
            True if the participant was a member of ``room_id``.
        """
        members = self.rooms.get(room_id)
        if members is None or participant_id not in members:
            return False

        members.discard(participant_id)
        if self.participant_rooms.get(participant_id) == room_id:
            del self.participant_rooms[participant_id]

        # No empty-room garbage
        if not members:
            del self.rooms[room_id]
            logger.debug("Room %s is empty, removed", room_id)

        return True

    def discard(self, participant_id: str) -> Optional[str]:
        """Leave whatever room the participant occupies; returns that room."""
        room_id = self.participant_rooms.get(participant_id)
        if room_id is None:
            return None
        self.leave(participant_id, room_id)
        return room_id

    def members_of(self, room_id: str) -> FrozenSet[str]:
        """Snapshot of a room's members (empty if the room does not exist)."""
        return frozenset(self.rooms.get(room_id, ()))

    def room_of(self, participant_id: str) -> Optional[str]:
        return self.participant_rooms.get(participant_id)

    @property
    def room_count(self) -> int:
        return len(self.rooms)

    @property
    def participant_count(self) -> int:
        return len(self.participant_rooms)

    def rooms_info(self) -> Dict[str, int]:
        """Room id -> member count, used by the health and metrics routes."""
        return {room_id: len(members) for room_id, members in self.rooms.items()}
