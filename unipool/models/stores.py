"""
Data access for users, rides and chat messages.

The realtime core only talks to these stores, never to the ORM session
directly, so tests can swap a store for a failing or recording double.
"""

import logging
from collections import namedtuple
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from unipool.errors import (
    MessagePersistenceError,
    RideMembershipError,
    RideNotFoundError,
    RidePermissionError,
    ValidationError,
)
from .chat_models import ChatMessage
from .database_config import get_db, utcnow
from .ride_models import TRANSPORT_TYPES, Ride, RideParticipant
from .user_models import User

logger = logging.getLogger(__name__)

# Result of deleting a ride: either the ride is gone or it has a new host
DeleteOutcome = namedtuple("DeleteOutcome", ["ride", "deleted", "new_host_id"])


class UserStore:
    def get_user(self, user_id):
        with get_db() as db:
            return db.get(User, user_id)

    def get_by_username(self, username):
        with get_db() as db:
            return db.query(User).filter(User.username == username).first()

    def create_user(self, username, password, university):
        with get_db() as db:
            user = User(username=username, university=university)
            user.set_password(password)
            db.add(user)
            try:
                db.flush()
            except IntegrityError:
                raise ValidationError("Username already exists")
            return user


class RideStore:
    def _load_active(self, db, ride_id, for_update=False):
        query = db.query(Ride).filter(Ride.id == ride_id, Ride.is_active.is_(True))
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_ride(self, ride_id):
        """Active ride or None; inactive rides are treated as missing"""
        with get_db() as db:
            return self._load_active(db, ride_id)

    def is_participant(self, ride_id, user_id):
        with get_db() as db:
            return db.query(RideParticipant).join(Ride).filter(
                RideParticipant.ride_id == ride_id,
                RideParticipant.user_id == user_id,
                Ride.is_active.is_(True),
            ).count() > 0

    def list_active_rides(self):
        with get_db() as db:
            return db.query(Ride).filter(Ride.is_active.is_(True)).order_by(Ride.departure_time).all()

    def create_ride(self, host_id, origin, destination, departure_time, transport_type, seats_available):
        if transport_type not in TRANSPORT_TYPES:
            raise ValidationError(f"transportType must be one of {', '.join(TRANSPORT_TYPES)}")

        with get_db() as db:
            ride = Ride(
                host_id=host_id,
                origin=origin,
                destination=destination,
                departure_time=departure_time,
                transport_type=transport_type,
                seats_available=seats_available,
            )
            ride.participants.append(RideParticipant(user_id=host_id))
            db.add(ride)
            db.flush()
            logger.info(f"Ride {ride.id} created by user {host_id}")
            return ride

    def add_participant(self, ride_id, user_id):
        with get_db() as db:
            ride = self._load_active(db, ride_id, for_update=True)
            if not ride:
                raise RideNotFoundError()
            if user_id in ride.participant_ids:
                raise RideMembershipError("Already a participant of this ride")

            ride.participants.append(RideParticipant(user_id=user_id))
            db.flush()
            return ride

    def remove_participant(self, ride_id, user_id):
        """A participant leaves. The host has to delete or hand over the ride instead."""
        with get_db() as db:
            ride = self._load_active(db, ride_id, for_update=True)
            if not ride:
                raise RideNotFoundError()
            if ride.host_id == user_id:
                raise RideMembershipError("The host cannot leave the ride; delete it instead")

            self._drop_participant(ride, user_id)
            db.flush()
            return ride

    def kick_participant(self, ride_id, host_id, user_id):
        with get_db() as db:
            ride = self._load_active(db, ride_id, for_update=True)
            if not ride:
                raise RideNotFoundError()
            if ride.host_id != host_id:
                raise RidePermissionError("Only the host can remove participants")
            if user_id == host_id:
                raise RideMembershipError("The host cannot remove themselves")

            self._drop_participant(ride, user_id)
            db.flush()
            logger.info(f"User {user_id} removed from ride {ride_id} by host {host_id}")
            return ride

    def delete_ride(self, ride_id, user_id):
        """
        Delete a ride on behalf of its host.

        PERSONAL rides always go away. Shared rides (UBER, CNG) pass to the
        earliest remaining participant and are only deleted when nobody is left.
        Deleted rides are deactivated rather than removed so chat history keeps
        a valid ride reference.
        """
        with get_db() as db:
            ride = self._load_active(db, ride_id, for_update=True)
            if not ride:
                raise RideNotFoundError()
            if ride.host_id != user_id:
                raise RidePermissionError()

            remaining = [pid for pid in ride.participant_ids if pid != user_id]
            if ride.transport_type != "PERSONAL" and remaining:
                new_host_id = remaining[0]
                ride.host_id = new_host_id
                self._drop_participant(ride, user_id)
                db.flush()
                logger.info(f"Ride {ride_id} transferred from user {user_id} to user {new_host_id}")
                return DeleteOutcome(ride, False, new_host_id)

            ride.is_active = False
            db.flush()
            logger.info(f"Ride {ride_id} deleted by host {user_id}")
            return DeleteOutcome(ride, True, None)

    @staticmethod
    def _drop_participant(ride, user_id):
        for participant in ride.participants:
            if participant.user_id == user_id:
                ride.participants.remove(participant)
                return
        raise RideMembershipError("User is not a participant of this ride")


class MessageStore:
    def create_message(self, user_id, ride_id, content, kind="text", attachment=None):
        """Persist a chat message; the store assigns its id and timestamp"""
        try:
            with get_db() as db:
                ride = db.query(Ride.id).filter(Ride.id == ride_id, Ride.is_active.is_(True)).first()
                if not ride:
                    raise MessagePersistenceError("Ride not found")

                # Keep timestamps non-decreasing per ride even if the clock steps back
                latest = db.query(func.max(ChatMessage.timestamp)).filter(
                    ChatMessage.ride_id == ride_id
                ).scalar()
                timestamp = utcnow()
                if latest is not None and latest > timestamp:
                    timestamp = latest

                message = ChatMessage(
                    ride_id=ride_id,
                    user_id=user_id,
                    content=content,
                    kind=kind,
                    attachment=attachment,
                    timestamp=timestamp,
                )
                db.add(message)
                db.flush()
                return message
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist message for ride {ride_id}: {e}")
            raise MessagePersistenceError() from e

    def list_messages(self, ride_id):
        with get_db() as db:
            return db.query(ChatMessage).filter(
                ChatMessage.ride_id == ride_id
            ).order_by(ChatMessage.timestamp, ChatMessage.id).all()

    def list_messages_with_authors(self, ride_id):
        """Chat history as wire dicts, oldest first"""
        with get_db() as db:
            rows = db.query(ChatMessage, User.username).join(
                User, User.id == ChatMessage.user_id
            ).filter(
                ChatMessage.ride_id == ride_id
            ).order_by(ChatMessage.timestamp, ChatMessage.id).all()
            return [message.to_dict(username=username) for message, username in rows]
