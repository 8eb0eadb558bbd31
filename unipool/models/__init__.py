"""
Database models for UniPool
"""

from .database_config import Base, SessionLocal, get_db, init_db, init_engine, drop_db, utcnow
from .user_models import User
from .ride_models import Ride, RideParticipant, TRANSPORT_TYPES
from .chat_models import ChatMessage
from .stores import UserStore, RideStore, MessageStore, DeleteOutcome

__all__ = [
    'Base', 'SessionLocal', 'get_db', 'init_db', 'init_engine', 'drop_db', 'utcnow',
    'User', 'Ride', 'RideParticipant', 'TRANSPORT_TYPES', 'ChatMessage',
    'UserStore', 'RideStore', 'MessageStore', 'DeleteOutcome',
]
