"""
Fan-out of chat frames to every live member of a ride room.
"""

import logging

logger = logging.getLogger(__name__)


class Broadcaster:
    def __init__(self, registry, transport, is_open):
        self.registry = registry
        self.transport = transport
        # Callable(sid) -> bool supplied by the connection manager
        self.is_open = is_open

    def broadcast(self, ride_id, event, payload) -> int:
        """
        Deliver payload to the room's current members. Returns the delivered count.

        Callers hold the ride's ordering lock, which membership changes for the
        ride also take, so the member set cannot change during delivery. The
        registry lock is only held while copying the set; other rooms deliver
        in parallel.
        """
        delivered = 0
        members = self.registry.get_members(ride_id)
        for sid in members:
            if not self.is_open(sid):
                continue
            try:
                self.transport.send(sid, event, payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to deliver {event} to {sid} in room {ride_id}: {e}")

        logger.debug(f"Broadcast {event} to room {ride_id}: {delivered}/{len(members)} delivered")
        return delivered
