"""
User model for UniPool.
"""

from sqlalchemy import Column, Integer, String, DateTime
from werkzeug.security import generate_password_hash, check_password_hash
from .database_config import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(80), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    university = Column(String(120), nullable=False)
    avatar = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def set_password(self, password):
        """Set password hash"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check if provided password matches hash"""
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "university": self.university,
            "avatar": self.avatar,
        }

    def __repr__(self):
        return f"<User {self.username}>"
