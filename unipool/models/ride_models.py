"""
Ride and ride membership models for UniPool.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .database_config import Base, utcnow

TRANSPORT_TYPES = ("PERSONAL", "UBER", "CNG")


class Ride(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    departure_time = Column(DateTime, nullable=False)
    transport_type = Column(String(20), nullable=False)
    seats_available = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    participants = relationship(
        "RideParticipant",
        back_populates="ride",
        cascade="all, delete-orphan",
        order_by="RideParticipant.id",
        lazy="selectin",
    )

    @property
    def participant_ids(self):
        return [p.user_id for p in self.participants]

    def to_dict(self):
        return {
            "id": self.id,
            "hostId": self.host_id,
            "origin": self.origin,
            "destination": self.destination,
            "departureTime": self.departure_time.isoformat() if self.departure_time else None,
            "transportType": self.transport_type,
            "seatsAvailable": self.seats_available,
            "isActive": self.is_active,
            "participants": self.participant_ids,
        }

    def __repr__(self):
        return f"<Ride {self.id} {self.origin} -> {self.destination}>"


class RideParticipant(Base):
    __tablename__ = "ride_participants"
    __table_args__ = (UniqueConstraint("ride_id", "user_id", name="uq_ride_participant"),)

    id = Column(Integer, primary_key=True, index=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=utcnow)

    ride = relationship("Ride", back_populates="participants")

    def __repr__(self):
        return f"<RideParticipant user={self.user_id} ride={self.ride_id}>"
