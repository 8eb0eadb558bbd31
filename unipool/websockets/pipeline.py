"""
Inbound chat message pipeline: validate, persist, then broadcast.
"""

import logging
import threading

from unipool.errors import MessageValidationError, NoActiveRideError, UnknownAuthorError
from unipool.models.stores import MessageStore
from .frames import message_frame

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 2000
DEFAULT_KINDS = ("text",)
ORDERING_STRIPES = 64


class MessagePipeline:
    """
    Turns a message frame from a joined connection into a persisted,
    broadcast ChatMessage.

    Persisting and broadcasting for one ride happen under the same ordering
    lock, so members see messages in the order the store accepted them.
    A message that fails to persist is never broadcast.
    """

    def __init__(self, broadcaster, display_name, message_store=None,
                 max_length=DEFAULT_MAX_LENGTH, kinds=DEFAULT_KINDS):
        self.broadcaster = broadcaster
        self.display_name = display_name
        self.message_store = message_store or MessageStore()
        self.max_length = max_length
        self.kinds = tuple(kinds)
        # Striped locks keep per-ride ordering without one lock object per ride ever seen
        self._stripes = [threading.Lock() for _ in range(ORDERING_STRIPES)]

    def ordering_lock(self, ride_id):
        return self._stripes[hash(ride_id) % ORDERING_STRIPES]

    def validate(self, frame):
        """Return (content, kind) or raise MessageValidationError"""
        content = frame.content
        if not isinstance(content, str) or not content.strip():
            raise MessageValidationError("Message cannot be empty")

        content = content.strip()
        if len(content) > self.max_length:
            raise MessageValidationError(f"Message exceeds {self.max_length} characters")

        kind = frame.kind or "text"
        if kind not in self.kinds:
            raise MessageValidationError(f"Unsupported message kind: {kind}")

        return content, kind

    def ingest(self, connection, frame):
        ride_id = connection.ride_id
        if ride_id is None:
            raise NoActiveRideError()

        try:
            content, kind = self.validate(frame)
        except MessageValidationError as e:
            logger.info(f"[MESSAGE] Dropped invalid message from user {connection.user_id} in ride {ride_id}: {e}")
            raise

        username = self.display_name(connection.user_id)
        if username is None:
            raise UnknownAuthorError()

        with self.ordering_lock(ride_id):
            message = self.message_store.create_message(connection.user_id, ride_id, content, kind)
            message.username = username
            delivered = self.broadcaster.broadcast(ride_id, "message", message_frame(message.to_dict()))

        logger.info(f"[MESSAGE] Message {message.id} from user {connection.user_id} in ride {ride_id} delivered to {delivered}")
        return message
