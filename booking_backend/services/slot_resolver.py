"""Free/busy computation for a professional's working day.

Read-only: the resolver never reserves a slot. A window reported free can be
taken by a concurrent negotiation before the caller's suggestion is accepted,
which is why the accept path re-runs ``find_conflicts`` inside its own
transaction, holding the professional's schedule lock.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import text
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import ValidationError
from booking_backend.database import SessionFactory, transaction
from booking_backend.models.appointment import ACTIVE_STATUSES, Appointment
from booking_backend.models.user import User


@dataclass(frozen=True)
class Slot:
    """A candidate ``[start, end)`` window."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M} - {self.end:%H:%M}"


def validate_window(start: datetime, end: datetime) -> None:
    if start is None or end is None:
        raise ValidationError('Start and end times are required.')
    if end <= start:
        raise ValidationError('End time must be after start time.')


def lock_professional_schedule(session: Session, professional_id: str) -> None:
    """Serialise writers of one professional's calendar until the transaction ends.

    A ``FOR UPDATE`` on conflicting rows locks nothing when the window is
    free, so the lock is keyed on the professional instead. PostgreSQL gets a
    transaction-scoped advisory lock; other backends lock the user row
    (SQLite already serialises writers per database file).
    """
    if session.get_bind().dialect.name == 'postgresql':
        session.execute(text('SELECT pg_advisory_xact_lock(hashtext(:key))'), {'key': professional_id})
        return
    session.query(User.id).filter(User.id == professional_id).with_for_update().first()


def find_conflicts(
    session: Session,
    professional_id: str,
    start: datetime,
    end: datetime,
    exclude_appointment_id: str | None = None,
    lock: bool = False,
) -> list[Appointment]:
    """Active appointments of the professional that intersect ``[start, end)``.

    With ``lock`` the professional's schedule lock is taken first, so no other
    writer can book the window before this transaction commits.
    """
    if lock:
        lock_professional_schedule(session, professional_id)
    query = session.query(Appointment).filter(
        Appointment.professional_id == professional_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.start_time < end,
        Appointment.end_time > start,
    )
    if exclude_appointment_id:
        query = query.filter(Appointment.id != exclude_appointment_id)
    if lock:
        query = query.with_for_update()
    return query.order_by(Appointment.start_time.asc()).all()


class SlotResolver:
    def __init__(
        self,
        session_factory: SessionFactory,
        workday_start: time | None = None,
        workday_end: time | None = None,
        step_minutes: int | None = None,
    ):
        self._session_factory = session_factory
        self.workday_start = workday_start or time(config.WORKDAY_START_HOUR, 0)
        self.workday_end = workday_end or (
            time(config.WORKDAY_END_HOUR, 0) if config.WORKDAY_END_HOUR < 24 else time.max
        )
        self.step_minutes = step_minutes or config.SLOT_STEP_MINUTES

        if self.workday_end <= self.workday_start:
            raise ValueError('Working day must end after it starts.')
        if self.step_minutes <= 0:
            raise ValueError('Slot step must be positive.')

    def working_window(self, day: date) -> tuple[datetime, datetime]:
        return datetime.combine(day, self.workday_start), datetime.combine(day, self.workday_end)

    def find_available_slots(
        self,
        professional_id: str,
        day: date,
        duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    ) -> list[Slot]:
        if duration_minutes <= 0:
            raise ValidationError('Duration must be a positive number of minutes.')

        day_open, day_close = self.working_window(day)

        with transaction(self._session_factory) as session:
            booked = [
                (appointment.start_time, appointment.end_time)
                for appointment in find_conflicts(session, professional_id, day_open, day_close)
            ]

        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=self.step_minutes)
        available: list[Slot] = []
        current = day_open

        while current + duration <= day_close:
            candidate = Slot(start=current, end=current + duration)
            if not any(candidate.overlaps(booked_start, booked_end) for booked_start, booked_end in booked):
                available.append(candidate)
            current += step

        return available

    def check_conflicts(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[Appointment]:
        validate_window(start, end)
        with transaction(self._session_factory) as session:
            return find_conflicts(session, professional_id, start, end, exclude_appointment_id)

    def is_slot_available(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> bool:
        return not self.check_conflicts(professional_id, start, end, exclude_appointment_id)
