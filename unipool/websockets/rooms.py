"""
Room registry: which live connections are subscribed to which ride chat.
"""

import logging
import threading
from typing import Dict, Hashable, Set

logger = logging.getLogger(__name__)


class RoomRegistry:
    """
    Mapping of ride id to the set of connection ids in that ride's room.

    The registry is the single owner of room state. Every read and write goes
    through one re-entrant lock, and a room disappears as soon as its last
    member leaves.
    """

    def __init__(self):
        self._rooms: Dict[int, Set[Hashable]] = {}
        self._lock = threading.RLock()

    def add_member(self, ride_id: int, sid: Hashable) -> bool:
        """Add a connection to a room. Returns False if it was already a member."""
        with self._lock:
            members = self._rooms.get(ride_id)
            if members is None:
                members = self._rooms[ride_id] = set()
                logger.debug(f"Room {ride_id} created")
            if sid in members:
                return False
            members.add(sid)
            return True

    def remove_member(self, ride_id: int, sid: Hashable) -> bool:
        """Remove a connection from a room. Unknown rooms and members are a no-op."""
        with self._lock:
            members = self._rooms.get(ride_id)
            if not members or sid not in members:
                return False
            members.discard(sid)
            if not members:
                del self._rooms[ride_id]
                logger.debug(f"Room {ride_id} removed (empty)")
            return True

    def get_members(self, ride_id: int) -> Set[Hashable]:
        with self._lock:
            return set(self._rooms.get(ride_id, ()))

    def has_room(self, ride_id: int) -> bool:
        with self._lock:
            return ride_id in self._rooms

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def snapshot(self) -> Dict[int, int]:
        """Member count per room, for monitoring"""
        with self._lock:
            return {ride_id: len(members) for ride_id, members in self._rooms.items()}
