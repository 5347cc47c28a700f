"""Appointment model definitions."""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, String, Text
from booking_backend.database import Base


class AppointmentType(str, enum.Enum):
    CONSULTATION = "consultation"
    COURT = "court"
    CLIENT_MEETING = "client_meeting"
    EXPERTISE = "expertise"
    MEDIATION = "mediation"
    SIGNATURE = "signature"
    PHONE = "phone"
    VIDEO = "video"
    OTHER = "other"


class LocationType(str, enum.Enum):
    OFFICE = "office"
    COURT = "court"
    CLIENT_LOCATION = "client_location"
    ONLINE = "online"
    OTHER = "other"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that hold the professional's time window.
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def is_transition_allowed(current: str, target: str) -> bool:
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


class Appointment(Base):
    """Represents a booked window between a professional and a client."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    case_id = Column(String(36), nullable=True, index=True)
    professional_id = Column(String(36), nullable=False, index=True)
    client_id = Column(String(36), nullable=False, index=True)
    appointment_type = Column(String, nullable=False, default=AppointmentType.CONSULTATION.value)
    title = Column(String, nullable=False)
    description = Column(Text)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    location_type = Column(String)
    location_address = Column(String)
    location_latitude = Column(Float)
    location_longitude = Column(Float)
    meeting_url = Column(String)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.start_time}-{self.end_time} ({self.status})>"
