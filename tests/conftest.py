import os
import threading
from datetime import datetime

import pytest
from cachelib import SimpleCache

# Set test environment before importing the app
os.environ['SECRET_KEY'] = 'test-secret'
os.environ['DATABASE_URL'] = 'sqlite://'

from unipool import create_app
from unipool.errors import MessagePersistenceError
from unipool.models import ChatMessage, RideStore, UserStore, drop_db, utcnow
from unipool.websockets import handlers
from unipool.websockets.handlers import get_hub

PASSWORD = "password123"


@pytest.fixture
def app():
    """App on a fresh in-memory database and session store"""
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DATABASE_URL": "sqlite://",
        "SESSION_TYPE": "cachelib",
        "SESSION_CACHELIB": SimpleCache(),
        "CACHE_TYPE": "SimpleCache",
        "LOG_LEVEL": "DEBUG",
    })
    with app.app_context():
        yield app
        drop_db()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def hub(app):
    return get_hub(app)


@pytest.fixture
def make_user(app):
    users = UserStore()

    def _make(username, university="BUET"):
        return users.create_user(username, PASSWORD, university)

    return _make


@pytest.fixture
def make_ride(app):
    rides = RideStore()

    def _make(host, transport_type="UBER"):
        return rides.create_ride(
            host_id=host.id,
            origin="Campus Gate",
            destination="Downtown",
            departure_time=datetime(2030, 1, 15, 8, 30),
            transport_type=transport_type,
            seats_available=3,
        )

    return _make


@pytest.fixture
def logged_in(app):
    """Flask test client holding a session cookie for the given user"""

    def _login(user):
        http = app.test_client()
        response = http.post('/api/login', json={"username": user.username, "password": PASSWORD})
        assert response.status_code == 200
        return http

    return _login


@pytest.fixture
def chat_client(app, logged_in):
    """Socket.IO test client whose handshake carries the user's session cookie"""
    opened = []

    def _connect(user):
        http = logged_in(user)
        sio = handlers.socketio.test_client(app, flask_test_client=http)
        opened.append(sio)
        return sio

    yield _connect

    for sio in opened:
        if sio.is_connected():
            sio.disconnect()


def received(sio, name=None):
    """Payloads received by a Socket.IO test client, optionally for one event"""
    packets = sio.get_received()
    # The test client stores 'message'/'json' events with unwrapped args
    return [p['args'] if p['name'] in ('message', 'json') else p['args'][0]
            for p in packets if name is None or p['name'] == name]


class FakeTransport:
    """Records frames instead of sending them"""

    def __init__(self):
        self.sent = []
        self.closed = []
        self.failing = set()
        self._lock = threading.Lock()

    def send(self, sid, event, payload):
        if sid in self.failing:
            raise ConnectionError(f"send to {sid} failed")
        with self._lock:
            self.sent.append((sid, event, payload))

    def close(self, sid, code, reason):
        self.closed.append((sid, code, reason))

    def frames(self, sid, event=None):
        with self._lock:
            return [p for s, e, p in self.sent if s == sid and (event is None or e == event)]


class StaticAuthorizer:
    """Authorizer backed by a dict of ride id to participant ids"""

    def __init__(self, participants=None):
        self.participants = participants or {}
        self.calls = 0

    def authorize(self, user_id, ride_id):
        self.calls += 1
        return user_id in self.participants.get(ride_id, set())


class FakeMessageStore:
    """Thread-safe in-memory message store; set fail=True to simulate an outage"""

    def __init__(self):
        self.messages = []
        self.fail = False
        self._lock = threading.Lock()

    def create_message(self, user_id, ride_id, content, kind="text", attachment=None):
        if self.fail:
            raise MessagePersistenceError()
        with self._lock:
            message = ChatMessage(
                id=len(self.messages) + 1,
                ride_id=ride_id,
                user_id=user_id,
                content=content,
                kind=kind,
                timestamp=utcnow(),
            )
            self.messages.append(message)
            return message

    def list_messages_with_authors(self, ride_id):
        with self._lock:
            return [m.to_dict(username=f"user{m.user_id}") for m in self.messages if m.ride_id == ride_id]
