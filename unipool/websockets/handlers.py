"""
Socket.IO event handlers for UniPool.
Binds authenticated connections to ride chat rooms.
"""

import logging

from flask import current_app, request
from flask_socketio import ConnectionRefusedError, SocketIO

from unipool.errors import SessionError
from unipool.utils.cache import get_display_name
from .authorizer import MembershipAuthorizer
from .connections import ConnectionManager
from .frames import parse_frame
from .rooms import RoomRegistry
from .sessions import SessionResolver

logger = logging.getLogger(__name__)

# SocketIO instance will be created by the app factory
socketio = None


class SocketIOTransport:
    """Delivers frames to a single Socket.IO connection"""

    def __init__(self, socketio_instance):
        self.socketio = socketio_instance

    def send(self, sid, event, payload):
        self.socketio.emit(event, payload, to=sid)

    def close(self, sid, code, reason):
        logger.info(f"Closing {sid} (code: {code}, reason: {reason})")
        self.socketio.server.disconnect(sid)


class ChatHub:
    """Everything the realtime chat needs, owned by one Flask app"""

    def __init__(self, app, transport, ride_store=None, message_store=None):
        self.resolver = SessionResolver()
        self.registry = RoomRegistry()
        self.manager = ConnectionManager(
            self.registry,
            transport,
            MembershipAuthorizer(ride_store),
            display_name=get_display_name,
            message_store=message_store,
            max_length=app.config["CHAT_MAX_MESSAGE_LENGTH"],
            kinds=app.config["CHAT_MESSAGE_KINDS"],
        )


def get_hub(app=None) -> ChatHub:
    return (app or current_app).extensions["chat_hub"]


def init_socketio(app):
    """Initialize Socket.IO with the Flask app"""
    global socketio
    socketio = SocketIO(
        app,
        cors_allowed_origins=list(app.config["SOCKETIO_CORS_ORIGINS"] or []) or None,
        ping_timeout=app.config["SOCKETIO_PING_TIMEOUT"],
        ping_interval=app.config["SOCKETIO_PING_INTERVAL"],
        max_http_buffer_size=16384,
        manage_session=False,  # Let Flask-Session handle sessions
        cookie=None,  # Disable Socket.IO's own cookies to rely on the Flask session
        async_handlers=False,  # Frames of one connection are handled in arrival order
        engineio_logger=False,
        logger=False,
        async_mode=app.config["SOCKETIO_ASYNC_MODE"],
    )

    app.extensions["chat_hub"] = ChatHub(app, SocketIOTransport(socketio))

    register_handlers(socketio)

    return socketio


def register_handlers(sio):
    """Register all Socket.IO event handlers"""

    @sio.on("connect")
    def handle_connect(auth=None):
        """Authenticate the handshake from the session cookie"""
        hub = get_hub()
        try:
            user_id = hub.resolver.resolve(current_app, request)
        except SessionError as e:
            logger.warning(f"[CONNECTION] Rejected {request.sid}: {e.reason} (code: {e.close_code})")
            raise ConnectionRefusedError(e.reason, {"code": e.close_code})
        except Exception:
            logger.exception(f"[CONNECTION] Handshake failed for {request.sid}")
            raise ConnectionRefusedError("Internal server error", {"code": SessionError.close_code})

        hub.manager.open(request.sid, user_id)

    @sio.on("disconnect")
    def handle_disconnect(reason=None):
        """Handle client disconnection"""
        get_hub().manager.close(request.sid, reason=reason or "client disconnected")

    @sio.on("join")
    def handle_join(data=None):
        get_hub().manager.handle_frame(request.sid, parse_frame("join", data))

    @sio.on("message")
    def handle_message(data=None):
        get_hub().manager.handle_frame(request.sid, parse_frame("message", data))

    @sio.on("leave")
    def handle_leave(data=None):
        get_hub().manager.handle_frame(request.sid, parse_frame("leave", data))

    @sio.on("frame")
    def handle_raw_frame(data=None):
        """A raw frame whose payload carries its own type field"""
        get_hub().manager.handle_frame(request.sid, parse_frame(None, data))

    @sio.on("*")
    def handle_unknown(event, data=None):
        get_hub().manager.handle_frame(request.sid, parse_frame(event, data))

    @sio.on_error_default
    def default_error_handler(e):
        """Errors escaping a handler never take down the server"""
        logger.error(f"[SOCKET ERROR] Event: {request.event}, error: {e}")
        return False
