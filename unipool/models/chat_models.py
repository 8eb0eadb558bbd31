"""
Chat models for UniPool.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from .database_config import Base, utcnow


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_ride_timestamp", "ride_id", "timestamp"),)

    id = Column(Integer, primary_key=True, index=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    kind = Column(String(20), nullable=False, default="text")  # text, image
    attachment = Column(String(255), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    # Denormalized at broadcast time, never stored
    username = None

    def to_dict(self, username=None):
        return {
            "id": self.id,
            "rideId": self.ride_id,
            "userId": self.user_id,
            "username": username if username is not None else self.username,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() + "Z" if self.timestamp else None,
            "kind": self.kind,
        }

    def __repr__(self):
        return f"<ChatMessage {self.id} from user {self.user_id}>"
