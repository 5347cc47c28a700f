"""Appointment suggestion model definitions."""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from booking_backend.database import Base


class SuggestionStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"


class AppointmentSuggestion(Base):
    """A proposed window awaiting the counterparty's answer."""
    __tablename__ = "appointment_suggestions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id = Column(String(36), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True)
    suggested_by = Column(String(36), nullable=False, index=True)
    suggested_to = Column(String(36), nullable=False)
    suggested_start_time = Column(DateTime, nullable=False)
    suggested_end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=SuggestionStatus.PENDING.value)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING.value
