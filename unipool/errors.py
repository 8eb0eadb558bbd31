"""
Exception types for UniPool.
Realtime handshake failures carry the close code reported to the client.
"""

# Close codes sent when a realtime handshake or connection is terminated.
CLOSE_NO_SESSION = 4401
CLOSE_INVALID_SESSION = 4403
CLOSE_INTERNAL_ERROR = 4500


class UniPoolError(Exception):
    """Base class for application errors"""


class ValidationError(UniPoolError):
    """Request payload failed validation"""


# Session / handshake errors

class SessionError(UniPoolError):
    close_code = CLOSE_INTERNAL_ERROR
    reason = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.reason)


class NoSessionError(SessionError):
    close_code = CLOSE_NO_SESSION
    reason = "No session"


class InvalidSessionError(SessionError):
    close_code = CLOSE_INVALID_SESSION
    reason = "Invalid session"


class SessionStoreError(SessionError):
    close_code = CLOSE_INTERNAL_ERROR
    reason = "Session lookup failed"


# Chat errors, reported back to the sending connection as error events

class ChatError(UniPoolError):
    pass


class NoActiveRideError(ChatError):
    def __init__(self, message="No active ride"):
        super().__init__(message)


class MessageValidationError(ChatError):
    pass


class UnknownAuthorError(ChatError):
    def __init__(self, message="User not found"):
        super().__init__(message)


class MessagePersistenceError(ChatError):
    def __init__(self, message="Failed to send message"):
        super().__init__(message)


# Ride membership errors raised by the ride store

class RideError(UniPoolError):
    status_code = 400


class RideNotFoundError(RideError):
    status_code = 404

    def __init__(self, message="Ride not found"):
        super().__init__(message)


class RidePermissionError(RideError):
    status_code = 403

    def __init__(self, message="Unauthorized"):
        super().__init__(message)


class RideMembershipError(RideError):
    status_code = 400
