"""
Ride membership checks for chat room subscriptions.
"""

import logging

from unipool.models.stores import RideStore

logger = logging.getLogger(__name__)


class MembershipAuthorizer:
    """Confirms a user is a current participant of a ride. Never cached."""

    def __init__(self, ride_store=None):
        self.ride_store = ride_store or RideStore()

    def authorize(self, user_id, ride_id) -> bool:
        try:
            ride = self.ride_store.get_ride(ride_id)
        except Exception as e:
            logger.error(f"Ride lookup failed while authorizing user {user_id} for ride {ride_id}: {e}")
            return False

        if ride is None:
            logger.info(f"Join denied: ride {ride_id} not found (user {user_id})")
            return False

        if user_id not in ride.participant_ids:
            logger.warning(f"Unauthorized join attempt: user {user_id} for ride {ride_id}")
            return False

        return True
