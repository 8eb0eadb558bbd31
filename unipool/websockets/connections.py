"""
Connection lifecycle for the ride chat.

Each connection moves through CONNECTING -> AUTHENTICATED -> JOINED and back
to AUTHENTICATED on leave, ending in CLOSED. Frames of one connection are
handled one at a time under that connection's lock; different connections
progress independently.

Lock order is always: connection lock, then ride ordering lock, then the
room registry lock. A ride's room only changes under its ordering lock, and
at most one ordering lock is held at a time.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from unipool.errors import CLOSE_INTERNAL_ERROR, ChatError
from unipool.models.stores import MessageStore
from .broadcaster import Broadcaster
from .frames import (
    JoinFrame,
    LeaveFrame,
    MalformedFrame,
    MessageFrame,
    UnknownFrame,
    connected_frame,
    error_frame,
    joined_frame,
    left_frame,
    parse_ride_id,
)
from .pipeline import DEFAULT_KINDS, DEFAULT_MAX_LENGTH, MessagePipeline

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """One live, authenticated transport session"""

    sid: str
    user_id: int
    ride_id: Optional[int] = None
    state: ConnectionState = ConnectionState.CONNECTING
    is_open: bool = True
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class ConnectionManager:
    """Owns every live connection and drives its state machine"""

    def __init__(self, registry, transport, authorizer, display_name,
                 message_store=None, max_length=DEFAULT_MAX_LENGTH, kinds=DEFAULT_KINDS):
        self.registry = registry
        self.transport = transport
        self.authorizer = authorizer
        self.message_store = message_store or MessageStore()
        self.broadcaster = Broadcaster(registry, transport, self.is_open)
        self.pipeline = MessagePipeline(
            self.broadcaster,
            display_name,
            message_store=self.message_store,
            max_length=max_length,
            kinds=kinds,
        )
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Connection registry
    # -------------------------------------------------------------------------

    def open(self, sid, user_id) -> Connection:
        """Register a connection whose session has been resolved"""
        connection = Connection(sid=sid, user_id=user_id)
        with self._lock:
            self._connections[sid] = connection
        connection.state = ConnectionState.AUTHENTICATED

        logger.info(f"[CONNECTION] User {user_id} connected (sid: {sid})")
        self._send(connection, "connected", connected_frame(user_id))
        return connection

    def get(self, sid) -> Optional[Connection]:
        return self._connections.get(sid)

    def is_open(self, sid) -> bool:
        connection = self._connections.get(sid)
        return connection is not None and connection.is_open

    def close(self, sid, reason="Connection closed") -> bool:
        """
        Tear down a connection and drop it from its room.

        Safe to call from every teardown path; only the first call for a
        sid does any work.
        """
        with self._lock:
            connection = self._connections.pop(sid, None)
        if connection is None:
            return False

        with connection.lock:
            connection.is_open = False
            ride_id = connection.ride_id
            if ride_id is not None:
                self._leave_room(connection)
            connection.state = ConnectionState.CLOSED

        logger.info(
            f"[DISCONNECTION] User {connection.user_id} disconnected "
            f"(sid: {sid}, ride: {ride_id}, reason: {reason})"
        )
        return True

    # -------------------------------------------------------------------------
    # Frame handling
    # -------------------------------------------------------------------------

    def handle_frame(self, sid, frame):
        connection = self.get(sid)
        if connection is None:
            logger.debug(f"Dropping frame for unknown or closed connection {sid}")
            return

        with connection.lock:
            if connection.state is ConnectionState.CLOSED:
                return
            try:
                self._dispatch(connection, frame)
            except ChatError as e:
                self._send(connection, "error", error_frame(str(e)))
            except Exception:
                logger.exception(f"Unexpected error handling {type(frame).__name__} for {sid}")
                self._send(connection, "error", error_frame("Internal server error", CLOSE_INTERNAL_ERROR))
                self.close(sid, reason="internal error")
                try:
                    self.transport.close(sid, CLOSE_INTERNAL_ERROR, "Internal server error")
                except Exception as e:
                    logger.warning(f"Failed to close transport for {sid}: {e}")

    def _dispatch(self, connection, frame):
        if isinstance(frame, JoinFrame):
            self._handle_join(connection, frame)
        elif isinstance(frame, MessageFrame):
            self.pipeline.ingest(connection, frame)
        elif isinstance(frame, LeaveFrame):
            self._handle_leave(connection)
        elif isinstance(frame, MalformedFrame):
            logger.info(f"Malformed frame from {connection.sid}: {frame.error}")
            self._send(connection, "error", error_frame(frame.error))
        elif isinstance(frame, UnknownFrame):
            logger.info(f"Ignoring unknown frame type {frame.type!r} from {connection.sid}")
        else:
            raise TypeError(f"Unsupported frame: {frame!r}")

    def _handle_join(self, connection, frame):
        ride_id = parse_ride_id(frame.ride_id)
        if ride_id is None:
            self._send(connection, "error", error_frame("Invalid rideId"))
            return

        if not self.authorizer.authorize(connection.user_id, ride_id):
            if connection.ride_id == ride_id:
                # Membership was revoked without an eviction reaching this connection
                self._leave_room(connection)
            self._send(connection, "error", error_frame(f"Not authorized to join ride {ride_id}"))
            return

        if connection.ride_id is not None and connection.ride_id != ride_id:
            self._leave_room(connection)

        # Holding the ride's ordering lock means every message is either in
        # the history below or broadcast after the joined frame.
        with self.pipeline.ordering_lock(ride_id):
            self.registry.add_member(ride_id, connection.sid)
            connection.ride_id = ride_id
            connection.state = ConnectionState.JOINED
            self._send(connection, "joined", joined_frame(ride_id, self._history(ride_id)))

        logger.info(f"[JOIN] User {connection.user_id} joined ride {ride_id} (sid: {connection.sid})")

    def _handle_leave(self, connection):
        ride_id = connection.ride_id
        if ride_id is None:
            logger.debug(f"Leave from {connection.sid} without an active ride")
            return

        self._leave_room(connection)
        self._send(connection, "left", left_frame(ride_id))
        logger.info(f"[LEAVE] User {connection.user_id} left ride {ride_id} (sid: {connection.sid})")

    def _leave_room(self, connection):
        # Never called with another ride's ordering lock held
        with self.pipeline.ordering_lock(connection.ride_id):
            self.registry.remove_member(connection.ride_id, connection.sid)
        connection.ride_id = None
        connection.state = ConnectionState.AUTHENTICATED

    def _history(self, ride_id):
        try:
            return self.message_store.list_messages_with_authors(ride_id)
        except Exception as e:
            logger.error(f"Failed to load chat history for ride {ride_id}: {e}")
            return []

    # -------------------------------------------------------------------------
    # Membership changes made outside the socket (leave, kick, delete)
    # -------------------------------------------------------------------------

    def evict(self, ride_id, user_id=None, reason="removed") -> int:
        """
        Remove live connections from a ride room after its membership changed.
        With no user_id every member is evicted (ride deleted).

        Candidates come from the live connections rather than the room, so a
        join that was authorized before the change but has not reached the
        registry yet is caught too: its connection lock is held until the
        join completes.
        """
        with self._lock:
            candidates = [
                c for c in self._connections.values()
                if user_id is None or c.user_id == user_id
            ]

        evicted = 0
        for connection in candidates:
            with connection.lock:
                if connection.state is ConnectionState.CLOSED or connection.ride_id != ride_id:
                    continue
                self._leave_room(connection)
                self._send(connection, "left", left_frame(ride_id, reason))
                evicted += 1

        if evicted:
            logger.info(f"[EVICT] Removed {evicted} connection(s) from ride {ride_id} (user: {user_id}, reason: {reason})")
        return evicted

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _send(self, connection, event, payload) -> bool:
        if not connection.is_open:
            return False
        try:
            self.transport.send(connection.sid, event, payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to send {event} to {connection.sid}: {e}")
            return False

    def get_stats(self) -> dict:
        with self._lock:
            active = len(self._connections)
        return {
            "active_connections": active,
            "active_rooms": self.registry.room_count(),
            "rooms": self.registry.snapshot(),
        }
