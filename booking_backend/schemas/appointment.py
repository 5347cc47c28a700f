from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from booking_backend.models.appointment import AppointmentStatus, AppointmentType, LocationType


MAX_NOTES_LENGTH = 2000

# Patch fields that map onto NOT NULL columns.
NON_NULLABLE_FIELDS = frozenset({'appointment_type', 'title', 'start_time', 'end_time', 'status', 'reminder_sent'})


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def normalize_datetime(value: datetime | None) -> datetime | None:
    """Stored times are naive; aware input is converted to UTC first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AppointmentCreate(BaseModel):
    professional_id: str
    client_id: str
    title: str
    start_time: datetime
    end_time: datetime
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    case_id: str | None = None
    description: str | None = None
    location_type: LocationType | None = None
    location_address: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    meeting_url: str | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator('professional_id', 'client_id', 'title')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Value is required.')
        return normalized

    @field_validator('description', 'location_address', 'meeting_url', 'notes', 'case_id')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _normalize_text(value)

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_times(cls, value: datetime) -> datetime:
        return normalize_datetime(value)


class AppointmentPatch(BaseModel):
    """Partial update: only the fields explicitly set are applied."""

    case_id: str | None = None
    appointment_type: AppointmentType | None = None
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location_type: LocationType | None = None
    location_address: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    meeting_url: str | None = None
    status: AppointmentStatus | None = None
    reminder_sent: bool | None = None
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)

    def changes(self) -> dict:
        values = self.model_dump(exclude_unset=True)
        for key, value in values.items():
            if hasattr(value, 'value'):
                values[key] = value.value
        return values


class AppointmentFilters(BaseModel):
    status: AppointmentStatus | None = None
    appointment_type: AppointmentType | None = None
    professional_id: str | None = None
    client_id: str | None = None
    case_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    limit: int | None = Field(default=None, ge=1, le=500)
    offset: int | None = Field(default=None, ge=0)

    @field_validator('search')
    @classmethod
    def validate_search(cls, value: str | None) -> str | None:
        return _normalize_text(value)

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)


class AppointmentResponse(BaseModel):
    id: str
    case_id: str | None = None
    professional_id: str
    client_id: str
    appointment_type: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location_type: str | None = None
    location_address: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    meeting_url: str | None = None
    status: str
    reminder_sent: bool
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    total: int


class AppointmentStats(BaseModel):
    total: int = 0
    scheduled: int = 0
    confirmed: int = 0
    cancelled: int = 0
    completed: int = 0
    no_show: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    upcoming: int = 0
    today: int = 0
    this_week: int = 0
    this_month: int = 0
