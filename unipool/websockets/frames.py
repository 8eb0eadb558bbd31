"""
Chat frame types.

Inbound frames are parsed into one of a closed set of variants so handlers
never poke at loosely structured payloads. Anything unexpected becomes an
UnknownFrame or a MalformedFrame instead of raising.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class JoinFrame:
    ride_id: Any


@dataclass(frozen=True)
class MessageFrame:
    content: Any
    kind: Optional[str] = None


@dataclass(frozen=True)
class LeaveFrame:
    pass


@dataclass(frozen=True)
class UnknownFrame:
    type: Optional[str]


@dataclass(frozen=True)
class MalformedFrame:
    error: str


InboundFrame = Union[JoinFrame, MessageFrame, LeaveFrame, UnknownFrame, MalformedFrame]


def parse_frame(event: Optional[str], payload: Any = None) -> InboundFrame:
    """
    Build an inbound frame from a Socket.IO event name and its payload.

    The payload may be a dict or a JSON encoded object. When the event name
    is missing (a raw frame) the ``type`` field of the payload decides.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return MalformedFrame("Invalid frame encoding")

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return MalformedFrame("Invalid JSON format")

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return MalformedFrame("Frame payload must be an object")

    frame_type = event if event not in (None, "frame") else payload.get("type")

    if frame_type == "join":
        return JoinFrame(ride_id=payload.get("rideId"))
    if frame_type == "message":
        return MessageFrame(content=payload.get("content"), kind=payload.get("kind"))
    if frame_type == "leave":
        return LeaveFrame()
    return UnknownFrame(type=frame_type if isinstance(frame_type, str) else None)


def parse_ride_id(value) -> Optional[int]:
    """Ride ids arrive as ints or numeric strings; anything else is rejected"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        ride_id = int(value.strip())
        return ride_id if ride_id > 0 else None
    return None


# Outbound frames. The Socket.IO event name always equals the frame type.

def connected_frame(user_id):
    return {"type": "connected", "userId": user_id}


def joined_frame(ride_id, messages=None):
    return {"type": "joined", "rideId": ride_id, "messages": messages or []}


def left_frame(ride_id, reason="left"):
    return {"type": "left", "rideId": ride_id, "reason": reason}


def message_frame(message_dict):
    return {"type": "message", "message": message_dict}


def error_frame(message, code=None):
    frame = {"type": "error", "message": message}
    if code is not None:
        frame["code"] = code
    return frame
