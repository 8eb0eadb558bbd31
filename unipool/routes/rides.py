"""
Ride routes for UniPool.
Handles ride creation and the membership changes the chat has to follow.
"""

import logging
from datetime import datetime, timezone
from flask import Blueprint, jsonify, request
from unipool.auth.user_auth import current_user_id
from unipool.errors import RideError, RideNotFoundError, RidePermissionError, ValidationError
from unipool.models.stores import MessageStore, RideStore
from unipool.websockets.handlers import get_hub

logger = logging.getLogger(__name__)

rides_bp = Blueprint('rides', __name__)

rides = RideStore()
messages = MessageStore()


@rides_bp.errorhandler(RideError)
def handle_ride_error(e):
    return jsonify({"error": str(e)}), e.status_code


@rides_bp.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"error": str(e)}), 400


@rides_bp.before_request
def require_login():
    if current_user_id() is None:
        return jsonify({"error": "Not authenticated"}), 401


def parse_departure_time(value):
    """ISO-8601 string to naive UTC datetime"""
    if not isinstance(value, str) or not value:
        raise ValidationError("departureTime is required")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("departureTime must be an ISO-8601 timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@rides_bp.route("", methods=["POST"])
def create_ride():
    """Create a ride hosted by the current user"""
    data = request.get_json(silent=True) or {}

    origin = (data.get("origin") or "").strip()
    destination = (data.get("destination") or "").strip()
    if not origin or not destination:
        raise ValidationError("origin and destination are required")

    seats = data.get("seatsAvailable")
    if isinstance(seats, bool) or not isinstance(seats, int):
        raise ValidationError("seatsAvailable must be an integer")

    ride = rides.create_ride(
        host_id=current_user_id(),
        origin=origin,
        destination=destination,
        departure_time=parse_departure_time(data.get("departureTime")),
        transport_type=data.get("transportType"),
        seats_available=seats,
    )
    return jsonify({"ride": ride.to_dict()}), 201


@rides_bp.route("", methods=["GET"])
def list_rides():
    """All active rides"""
    return jsonify([ride.to_dict() for ride in rides.list_active_rides()])


@rides_bp.route("/<int:ride_id>", methods=["GET"])
def get_ride(ride_id):
    ride = rides.get_ride(ride_id)
    if not ride:
        raise RideNotFoundError()
    return jsonify(ride.to_dict())


@rides_bp.route("/<int:ride_id>/join", methods=["POST"])
def join_ride(ride_id):
    """Become a participant of a ride"""
    ride = rides.add_participant(ride_id, current_user_id())
    return jsonify({"ride": ride.to_dict()}), 201


@rides_bp.route("/<int:ride_id>/leave", methods=["POST"])
def leave_ride(ride_id):
    """Stop participating in a ride; live chat connections follow"""
    user_id = current_user_id()
    ride = rides.remove_participant(ride_id, user_id)
    get_hub().manager.evict(ride_id, user_id, reason="left ride")
    return jsonify({"ride": ride.to_dict()})


@rides_bp.route("/<int:ride_id>/kick/<int:user_id>", methods=["POST"])
def kick_participant(ride_id, user_id):
    """Host removes a participant"""
    ride = rides.kick_participant(ride_id, current_user_id(), user_id)
    get_hub().manager.evict(ride_id, user_id, reason="removed by host")
    return jsonify({"ride": ride.to_dict()})


@rides_bp.route("/<int:ride_id>", methods=["DELETE"])
def delete_ride(ride_id):
    """Host deletes a ride, or hands a shared ride to the next participant"""
    user_id = current_user_id()
    outcome = rides.delete_ride(ride_id, user_id)
    manager = get_hub().manager

    if outcome.deleted:
        manager.evict(ride_id, reason="ride deleted")
        return jsonify({"deleted": True})

    manager.evict(ride_id, user_id, reason="left ride")
    return jsonify({"deleted": False, "ride": outcome.ride.to_dict()})


@rides_bp.route("/<int:ride_id>/messages", methods=["GET"])
def get_messages(ride_id):
    """Chat history for participants, oldest first"""
    if not rides.get_ride(ride_id):
        raise RideNotFoundError()
    if not rides.is_participant(ride_id, current_user_id()):
        raise RidePermissionError("Not a participant of this ride")

    return jsonify(messages.list_messages_with_authors(ride_id))
