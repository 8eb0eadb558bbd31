"""
Session resolution for realtime handshakes.

The handshake goes through the same Flask-Session interface that serves
regular HTTP requests, so cookie unsigning and the store lookup live in one
place. Nothing here writes to the session store.
"""

import logging

from unipool.errors import InvalidSessionError, NoSessionError, SessionStoreError

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"


class SessionResolver:
    """Turns handshake cookies into an authenticated user id"""

    def resolve(self, app, request) -> int:
        cookie_name = app.config["SESSION_COOKIE_NAME"]
        if not request.cookies.get(cookie_name):
            raise NoSessionError()

        try:
            # Unsigns the cookie and loads the payload from the server-side store.
            # A bad signature or a store miss yields a fresh, empty session.
            session = app.session_interface.open_session(app, request)
        except Exception as e:
            logger.error(f"Session store lookup failed: {type(e).__name__}: {e}")
            raise SessionStoreError() from e

        if session is None:
            raise InvalidSessionError()

        try:
            user_id = session.get(SESSION_USER_KEY)
        except Exception as e:
            logger.warning(f"Malformed session payload: {e}")
            raise InvalidSessionError() from e

        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise InvalidSessionError()

        return user_id
