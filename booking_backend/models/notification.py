"""Notification model definitions."""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text
from booking_backend.database import Base


class Notification(Base):
    """In-app notification written by the database dispatcher."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    notification_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)
