"""User model definitions."""

import uuid

from sqlalchemy import Column, String
from booking_backend.database import Base


PROFESSIONAL_ROLE = "professional"
CLIENT_ROLE = "client"
ADMIN_ROLE = "admin"


class User(Base):
    """Represents a party that can book or negotiate appointments."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    role = Column(String)  # professional/client/admin

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.email or self.id
