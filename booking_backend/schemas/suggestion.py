from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from booking_backend.schemas.appointment import MAX_NOTES_LENGTH, AppointmentResponse, normalize_datetime


class CreateSuggestionRequest(BaseModel):
    suggested_to: str
    suggested_start_time: datetime
    suggested_end_time: datetime
    appointment_id: str | None = None
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator('suggested_to')
    @classmethod
    def validate_suggested_to(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Recipient is required.')
        return normalized

    @field_validator('suggested_start_time', 'suggested_end_time')
    @classmethod
    def normalize_times(cls, value: datetime) -> datetime:
        return normalize_datetime(value)


class RejectSuggestionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)


class CounterSuggestionRequest(BaseModel):
    suggested_start_time: datetime
    suggested_end_time: datetime
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator('suggested_start_time', 'suggested_end_time')
    @classmethod
    def normalize_times(cls, value: datetime) -> datetime:
        return normalize_datetime(value)


class SuggestionResponse(BaseModel):
    id: str
    appointment_id: str | None = None
    suggested_by: str
    suggested_to: str
    suggested_start_time: datetime
    suggested_end_time: datetime
    status: str
    notes: str | None = None
    created_at: datetime
    responded_at: datetime | None = None

    class Config:
        from_attributes = True


class AcceptSuggestionResponse(BaseModel):
    suggestion: SuggestionResponse
    appointment: AppointmentResponse


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    label: str
