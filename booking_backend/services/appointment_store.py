import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NoFieldsError,
    NotFoundError,
    ValidationError,
)
from booking_backend.database import SessionFactory, transaction
from booking_backend.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    LocationType,
    is_transition_allowed,
)
from booking_backend.models.user import User
from booking_backend.schemas.appointment import (
    NON_NULLABLE_FIELDS,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentPatch,
    AppointmentStats,
)
from booking_backend.services.notifications import NotificationDispatcher, dispatch_safely, format_when
from booking_backend.services.slot_resolver import find_conflicts, validate_window


logger = logging.getLogger(__name__)

PHYSICAL_LOCATIONS = {
    LocationType.OFFICE.value,
    LocationType.COURT.value,
    LocationType.CLIENT_LOCATION.value,
}


def validate_location(
    location_type: str | None,
    location_address: str | None,
    location_latitude: float | None,
    location_longitude: float | None,
    meeting_url: str | None,
) -> None:
    if location_type is None:
        return
    if location_type == LocationType.ONLINE.value and not meeting_url:
        raise ValidationError('Online appointments need a meeting URL.')
    has_coordinates = location_latitude is not None and location_longitude is not None
    if location_type in PHYSICAL_LOCATIONS and not (location_address or has_coordinates):
        raise ValidationError('In-person appointments need an address or coordinates.')


def ensure_transition(appointment: Appointment, target: str) -> None:
    if not is_transition_allowed(appointment.status, target):
        raise InvalidTransitionError(
            f'Cannot move appointment from {appointment.status} to {target}.'
        )


def display_name(session: Session, user_id: str) -> str:
    user = session.get(User, user_id)
    return user.display_name if user else user_id


class AppointmentStore:
    """Owns every write to the ``appointments`` table."""

    def __init__(self, session_factory: SessionFactory, dispatcher: NotificationDispatcher | None = None):
        self._session_factory = session_factory
        self._dispatcher = dispatcher or NotificationDispatcher()

    # In-transaction helpers, shared with the negotiation engine.

    def add(self, session: Session, data: AppointmentCreate) -> Appointment:
        validate_window(data.start_time, data.end_time)
        validate_location(
            data.location_type.value if data.location_type else None,
            data.location_address,
            data.location_latitude,
            data.location_longitude,
            data.meeting_url,
        )
        if data.status.value in ACTIVE_STATUSES:
            self._ensure_free(session, data.professional_id, data.start_time, data.end_time)

        now = datetime.now()
        appointment = Appointment(
            case_id=data.case_id,
            professional_id=data.professional_id,
            client_id=data.client_id,
            appointment_type=data.appointment_type.value,
            title=data.title,
            description=data.description,
            start_time=data.start_time,
            end_time=data.end_time,
            location_type=data.location_type.value if data.location_type else None,
            location_address=data.location_address,
            location_latitude=data.location_latitude,
            location_longitude=data.location_longitude,
            meeting_url=data.meeting_url,
            status=data.status.value,
            reminder_sent=False,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        session.add(appointment)
        session.flush()
        return appointment

    def load(self, session: Session, appointment_id: str, lock: bool = False) -> Appointment:
        query = session.query(Appointment).filter(Appointment.id == appointment_id)
        if lock:
            query = query.with_for_update()
        appointment = query.first()
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def reschedule(self, session: Session, appointment_id: str, start: datetime, end: datetime) -> Appointment:
        """Move an appointment to a new window and put it back to awaiting confirmation."""
        validate_window(start, end)
        appointment = self.load(session, appointment_id, lock=True)
        if not appointment.is_active:
            raise InvalidTransitionError(f'Cannot reschedule a {appointment.status} appointment.')
        self._ensure_free(session, appointment.professional_id, start, end, exclude_appointment_id=appointment.id)

        appointment.start_time = start
        appointment.end_time = end
        appointment.status = AppointmentStatus.SCHEDULED.value
        appointment.reminder_sent = False
        self._touch(appointment)
        session.flush()
        return appointment

    def _ensure_free(
        self,
        session: Session,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> None:
        conflicts = find_conflicts(session, professional_id, start, end, exclude_appointment_id, lock=True)
        if conflicts:
            raise ConflictError('The professional already has an appointment in this time window.')

    def _touch(self, appointment: Appointment) -> None:
        now = datetime.now()
        appointment.updated_at = max(now, appointment.updated_at) if appointment.updated_at else now

    # Public operations, each in its own transaction.

    def create(self, data: AppointmentCreate) -> Appointment:
        with transaction(self._session_factory) as session:
            appointment = self.add(session, data)
        logger.info('Created appointment %s for professional %s', appointment.id, appointment.professional_id)
        return appointment

    def get(self, appointment_id: str) -> Appointment:
        with transaction(self._session_factory) as session:
            return self.load(session, appointment_id)

    def update(self, appointment_id: str, patch: AppointmentPatch) -> Appointment:
        changes = patch.changes()
        if not changes:
            raise NoFieldsError('No fields to update.')

        null_fields = sorted(name for name in NON_NULLABLE_FIELDS if name in changes and changes[name] is None)
        if null_fields:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(null_fields)}.")

        with transaction(self._session_factory) as session:
            appointment = self.load(session, appointment_id, lock=True)

            start = changes.get('start_time', appointment.start_time)
            end = changes.get('end_time', appointment.end_time)
            validate_window(start, end)

            if 'status' in changes and changes['status'] != appointment.status:
                ensure_transition(appointment, changes['status'])

            validate_location(
                changes.get('location_type', appointment.location_type),
                changes.get('location_address', appointment.location_address),
                changes.get('location_latitude', appointment.location_latitude),
                changes.get('location_longitude', appointment.location_longitude),
                changes.get('meeting_url', appointment.meeting_url),
            )

            target_status = changes.get('status', appointment.status)
            window_moved = start != appointment.start_time or end != appointment.end_time
            if target_status in ACTIVE_STATUSES and window_moved:
                self._ensure_free(session, appointment.professional_id, start, end, exclude_appointment_id=appointment.id)

            for field, value in changes.items():
                setattr(appointment, field, value)
            self._touch(appointment)

        return appointment

    def delete(self, appointment_id: str) -> None:
        with transaction(self._session_factory) as session:
            appointment = self.load(session, appointment_id)
            session.delete(appointment)
        logger.info('Deleted appointment %s', appointment_id)

    def list_appointments(self, filters: AppointmentFilters | None = None) -> tuple[list[Appointment], int]:
        filters = filters or AppointmentFilters()

        with transaction(self._session_factory) as session:
            query = session.query(Appointment)

            if filters.status is not None:
                query = query.filter(Appointment.status == filters.status.value)
            if filters.appointment_type is not None:
                query = query.filter(Appointment.appointment_type == filters.appointment_type.value)
            if filters.professional_id is not None:
                query = query.filter(Appointment.professional_id == filters.professional_id)
            if filters.client_id is not None:
                query = query.filter(Appointment.client_id == filters.client_id)
            if filters.case_id is not None:
                query = query.filter(Appointment.case_id == filters.case_id)
            if filters.start_date is not None:
                query = query.filter(Appointment.start_time >= filters.start_date)
            if filters.end_date is not None:
                query = query.filter(Appointment.start_time <= filters.end_date)
            if filters.search:
                pattern = f'%{filters.search}%'
                query = query.filter(
                    or_(
                        Appointment.title.ilike(pattern),
                        Appointment.description.ilike(pattern),
                        Appointment.location_address.ilike(pattern),
                    )
                )

            total = query.count()

            query = query.order_by(Appointment.start_time.asc())
            if filters.offset:
                query = query.offset(filters.offset)
            if filters.limit:
                query = query.limit(filters.limit)

            return query.all(), total

    def list_for_professional(self, professional_id: str, filters: AppointmentFilters | None = None) -> list[Appointment]:
        scoped = (filters or AppointmentFilters()).model_copy(update={'professional_id': professional_id})
        appointments, _ = self.list_appointments(scoped)
        return appointments

    def list_for_client(self, client_id: str, filters: AppointmentFilters | None = None) -> list[Appointment]:
        scoped = (filters or AppointmentFilters()).model_copy(update={'client_id': client_id})
        appointments, _ = self.list_appointments(scoped)
        return appointments

    def list_for_case(self, case_id: str) -> list[Appointment]:
        appointments, _ = self.list_appointments(AppointmentFilters(case_id=case_id))
        return appointments

    def upcoming(
        self,
        professional_id: str | None = None,
        client_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Appointment]:
        filters = AppointmentFilters(
            status=AppointmentStatus.SCHEDULED,
            start_date=now or datetime.now(),
            professional_id=professional_id,
            client_id=client_id,
        )
        appointments, _ = self.list_appointments(filters)
        return appointments

    def today(
        self,
        professional_id: str | None = None,
        client_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Appointment]:
        day_start = datetime.combine((now or datetime.now()).date(), time.min)
        # end_date is inclusive, so stop just before midnight.
        filters = AppointmentFilters(
            start_date=day_start,
            end_date=day_start + timedelta(days=1) - timedelta(microseconds=1),
            professional_id=professional_id,
            client_id=client_id,
        )
        appointments, _ = self.list_appointments(filters)
        return appointments

    def stats(
        self,
        professional_id: str | None = None,
        client_id: str | None = None,
        now: datetime | None = None,
    ) -> AppointmentStats:
        now = now or datetime.now()
        today_start = datetime.combine(now.date(), time.min)
        week_start = today_start - timedelta(days=now.weekday())
        month_start = datetime.combine(date(now.year, now.month, 1), time.min)
        next_month = date(now.year + 1, 1, 1) if now.month == 12 else date(now.year, now.month + 1, 1)
        month_end = datetime.combine(next_month, time.min)

        def count_when(*conditions):
            return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)

        with transaction(self._session_factory) as session:
            scope = []
            if professional_id:
                scope.append(Appointment.professional_id == professional_id)
            if client_id:
                scope.append(Appointment.client_id == client_id)

            row = session.query(
                func.count(Appointment.id),
                *[count_when(Appointment.status == status.value) for status in AppointmentStatus],
                count_when(Appointment.start_time >= now),
                count_when(Appointment.start_time >= today_start, Appointment.start_time < today_start + timedelta(days=1)),
                count_when(Appointment.start_time >= week_start, Appointment.start_time < week_start + timedelta(weeks=1)),
                count_when(Appointment.start_time >= month_start, Appointment.start_time < month_end),
            ).filter(*scope).one()

            by_type_rows = (
                session.query(Appointment.appointment_type, func.count(Appointment.id))
                .filter(*scope)
                .group_by(Appointment.appointment_type)
                .all()
            )

        total, *status_counts, upcoming, today, this_week, this_month = (int(value or 0) for value in row)
        return AppointmentStats(
            total=total,
            **{status.value: count for status, count in zip(AppointmentStatus, status_counts)},
            by_type={appointment_type: int(count) for appointment_type, count in by_type_rows},
            upcoming=upcoming,
            today=today,
            this_week=this_week,
            this_month=this_month,
        )

    # Lifecycle actions.

    def _transition(self, appointment_id: str, target: AppointmentStatus) -> Appointment:
        with transaction(self._session_factory) as session:
            appointment = self.load(session, appointment_id, lock=True)
            ensure_transition(appointment, target.value)
            appointment.status = target.value
            self._touch(appointment)
        logger.info('Appointment %s is now %s', appointment_id, target.value)
        return appointment

    def confirm(self, appointment_id: str, acting_user_id: str | None = None) -> Appointment:
        appointment = self._transition(appointment_id, AppointmentStatus.CONFIRMED)
        self._notify_counterparty(
            appointment,
            acting_user_id,
            notification_type='appointment_confirmed',
            title='Appointment confirmed',
            verb='confirmed',
        )
        return appointment

    def cancel(self, appointment_id: str, acting_user_id: str | None = None) -> Appointment:
        appointment = self._transition(appointment_id, AppointmentStatus.CANCELLED)
        self._notify_counterparty(
            appointment,
            acting_user_id,
            notification_type='appointment_cancelled',
            title='Appointment cancelled',
            verb='cancelled',
        )
        return appointment

    def complete(self, appointment_id: str) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.COMPLETED)

    def mark_no_show(self, appointment_id: str) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.NO_SHOW)

    def mark_reminder_sent(self, appointment_id: str) -> Appointment:
        with transaction(self._session_factory) as session:
            appointment = self.load(session, appointment_id, lock=True)
            appointment.reminder_sent = True
            self._touch(appointment)
        return appointment

    def due_reminders(self, within: timedelta, now: datetime | None = None) -> list[Appointment]:
        now = now or datetime.now()
        with transaction(self._session_factory) as session:
            return (
                session.query(Appointment)
                .filter(
                    Appointment.status.in_(ACTIVE_STATUSES),
                    Appointment.reminder_sent.is_(False),
                    Appointment.start_time > now,
                    Appointment.start_time <= now + within,
                )
                .order_by(Appointment.start_time.asc())
                .all()
            )

    def send_due_reminders(self, now: datetime | None = None) -> int:
        """Remind both parties of appointments starting within the reminder window.

        An appointment is marked as reminded only when every notification went
        through, so a failed dispatch is retried on the next run.
        """
        window = timedelta(hours=config.REMINDER_WINDOW_HOURS)
        sent = 0
        for appointment in self.due_reminders(window, now):
            message = f'Reminder: "{appointment.title}" on {format_when(appointment.start_time)}.'
            data = {
                'appointment_id': appointment.id,
                'start_time': appointment.start_time.isoformat(),
                'end_time': appointment.end_time.isoformat(),
            }
            delivered = [
                dispatch_safely(
                    self._dispatcher.notify,
                    recipient,
                    'appointment_reminder',
                    'Appointment reminder',
                    message,
                    data,
                )
                for recipient in (appointment.professional_id, appointment.client_id)
            ]
            if all(delivered):
                self.mark_reminder_sent(appointment.id)
                sent += 1

        if sent:
            logger.info('Sent reminders for %d appointments', sent)
        return sent

    def _past_active(self, session: Session, now: datetime):
        return (
            session.query(Appointment)
            .filter(Appointment.status.in_(ACTIVE_STATUSES), Appointment.end_time < now)
            .order_by(Appointment.end_time.asc())
        )

    def past_active(self, now: datetime | None = None) -> list[Appointment]:
        """Active appointments that have already ended, i.e. what auto-complete would close."""
        with transaction(self._session_factory) as session:
            return self._past_active(session, now or datetime.now()).all()

    def auto_complete_past(self, now: datetime | None = None) -> int:
        now = now or datetime.now()
        with transaction(self._session_factory) as session:
            appointments = self._past_active(session, now).with_for_update().all()
            for appointment in appointments:
                appointment.status = AppointmentStatus.COMPLETED.value
                self._touch(appointment)

        if appointments:
            logger.info('Marked %d past appointments as completed', len(appointments))
        return len(appointments)

    def _notify_counterparty(
        self,
        appointment: Appointment,
        acting_user_id: str | None,
        notification_type: str,
        title: str,
        verb: str,
    ) -> None:
        if acting_user_id == appointment.professional_id:
            recipients = [appointment.client_id]
        elif acting_user_id == appointment.client_id:
            recipients = [appointment.professional_id]
        else:
            recipients = [appointment.professional_id, appointment.client_id]

        try:
            with transaction(self._session_factory) as session:
                actor = display_name(session, acting_user_id) if acting_user_id else 'An administrator'
        except Exception:
            logger.exception('Could not resolve display name for user %s', acting_user_id)
            actor = acting_user_id or 'An administrator'

        message = f'{actor} {verb} the appointment on {format_when(appointment.start_time)}.'
        for recipient in recipients:
            dispatch_safely(
                self._dispatcher.notify,
                recipient,
                notification_type,
                title,
                message,
                {
                    'appointment_id': appointment.id,
                    'start_time': appointment.start_time.isoformat(),
                    'end_time': appointment.end_time.isoformat(),
                },
            )
