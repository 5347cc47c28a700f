"""Slot negotiation between a professional and a client.

A suggestion moves from ``pending`` to exactly one of ``accepted``,
``rejected`` or ``countered`` and never changes again. Countering closes the
original and opens a fresh pending suggestion with the roles reversed.

Accept and counter touch several rows; they run inside one transaction and
read the suggestion with ``SELECT ... FOR UPDATE`` so that the pending status
acts as a compare-and-swap guard. Notifications go out only after commit.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from booking_backend.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from booking_backend.database import SessionFactory, transaction
from booking_backend.models.appointment import Appointment, AppointmentType
from booking_backend.models.suggestion import AppointmentSuggestion, SuggestionStatus
from booking_backend.models.user import PROFESSIONAL_ROLE, User
from booking_backend.schemas.appointment import AppointmentCreate
from booking_backend.services.appointment_store import AppointmentStore, display_name
from booking_backend.services.notifications import NotificationDispatcher, dispatch_safely, format_when
from booking_backend.services.slot_resolver import find_conflicts, validate_window


logger = logging.getLogger(__name__)

SENT = 'sent'
RECEIVED = 'received'

NEW_APPOINTMENT_TITLE = 'Appointment agreed by negotiation'
DEFAULT_COUNTER_NOTE = 'Counter-proposal'


def resolve_parties(session: Session, suggestion: AppointmentSuggestion) -> tuple[str, str]:
    """Return ``(professional_id, client_id)`` for the two negotiating users."""
    if suggestion.appointment_id:
        appointment = session.get(Appointment, suggestion.appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment.professional_id, appointment.client_id

    proposer = session.get(User, suggestion.suggested_by)
    if proposer is not None and proposer.role == PROFESSIONAL_ROLE:
        return suggestion.suggested_by, suggestion.suggested_to
    return suggestion.suggested_to, suggestion.suggested_by


class NegotiationEngine:
    def __init__(
        self,
        session_factory: SessionFactory,
        store: AppointmentStore,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self._store = store
        self._dispatcher = dispatcher or NotificationDispatcher()

    def _load(self, session: Session, suggestion_id: str, lock: bool = False) -> AppointmentSuggestion:
        query = session.query(AppointmentSuggestion).filter(AppointmentSuggestion.id == suggestion_id)
        if lock:
            query = query.with_for_update()
        suggestion = query.first()
        if suggestion is None:
            raise NotFoundError('Suggestion not found.')
        return suggestion

    def _load_for_response(self, session: Session, suggestion_id: str, acting_user_id: str) -> AppointmentSuggestion:
        suggestion = self._load(session, suggestion_id, lock=True)
        if suggestion.suggested_to != acting_user_id:
            raise UnauthorizedError('Only the recipient of a suggestion can respond to it.')
        if not suggestion.is_pending:
            raise InvalidTransitionError(f'Suggestion has already been {suggestion.status}.')
        return suggestion

    def _ensure_window_free(
        self,
        session: Session,
        suggestion: AppointmentSuggestion,
        start: datetime,
        end: datetime,
    ) -> None:
        professional_id, _ = resolve_parties(session, suggestion)
        conflicts = find_conflicts(
            session,
            professional_id,
            start,
            end,
            exclude_appointment_id=suggestion.appointment_id,
            lock=True,
        )
        if conflicts:
            raise ConflictError('The professional is no longer free in this time window.')

    def _check_appointment_parties(self, session: Session, appointment_id: str, *user_ids: str) -> None:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        parties = {appointment.professional_id, appointment.client_id}
        if not set(user_ids) <= parties:
            raise UnauthorizedError('Only the parties of an appointment can negotiate it.')

    def create_suggestion(
        self,
        suggested_by: str,
        suggested_to: str,
        start: datetime,
        end: datetime,
        appointment_id: str | None = None,
        notes: str | None = None,
    ) -> AppointmentSuggestion:
        validate_window(start, end)
        if suggested_by == suggested_to:
            raise ValidationError('A suggestion needs two different parties.')

        with transaction(self._session_factory) as session:
            if appointment_id:
                self._check_appointment_parties(session, appointment_id, suggested_by, suggested_to)

            suggestion = AppointmentSuggestion(
                appointment_id=appointment_id,
                suggested_by=suggested_by,
                suggested_to=suggested_to,
                suggested_start_time=start,
                suggested_end_time=end,
                status=SuggestionStatus.PENDING.value,
                notes=notes,
                created_at=datetime.now(),
            )
            self._ensure_window_free(session, suggestion, start, end)
            session.add(suggestion)
            session.flush()
            proposer_name = display_name(session, suggested_by)

        logger.info('Suggestion %s created by %s for %s', suggestion.id, suggested_by, suggested_to)

        message = f'{proposer_name} suggests an appointment on {format_when(start)}.'
        dispatch_safely(
            self._dispatcher.notify,
            suggested_to,
            'appointment_suggestion',
            'New time suggestion',
            message,
            {
                'suggestion_id': suggestion.id,
                'appointment_id': appointment_id,
                'suggested_start_time': start.isoformat(),
                'suggested_end_time': end.isoformat(),
            },
        )
        body = f'{message} Time: {start:%H:%M} - {end:%H:%M}.'
        if notes:
            body += f' Note: {notes}'
        dispatch_safely(
            self._dispatcher.send_email,
            suggested_to,
            f'New time suggestion from {proposer_name}',
            body,
        )
        return suggestion

    def accept_suggestion(self, suggestion_id: str, acting_user_id: str) -> tuple[AppointmentSuggestion, Appointment]:
        with transaction(self._session_factory) as session:
            suggestion = self._load_for_response(session, suggestion_id, acting_user_id)
            start, end = suggestion.suggested_start_time, suggestion.suggested_end_time
            suggestion.status = SuggestionStatus.ACCEPTED.value
            suggestion.responded_at = datetime.now()
            session.flush()

            # Both store paths re-check the professional's window under lock.
            if suggestion.appointment_id:
                appointment = self._store.reschedule(session, suggestion.appointment_id, start, end)
            else:
                professional_id, client_id = resolve_parties(session, suggestion)
                appointment = self._store.add(
                    session,
                    AppointmentCreate(
                        professional_id=professional_id,
                        client_id=client_id,
                        title=NEW_APPOINTMENT_TITLE,
                        appointment_type=AppointmentType.CONSULTATION,
                        start_time=start,
                        end_time=end,
                    ),
                )
                suggestion.appointment_id = appointment.id
                session.flush()

        logger.info('Suggestion %s accepted; appointment %s', suggestion.id, appointment.id)

        dispatch_safely(
            self._dispatcher.notify,
            suggestion.suggested_by,
            'suggestion_accepted',
            'Suggestion accepted',
            f'Your suggested appointment on {format_when(start)} was accepted.',
            {'suggestion_id': suggestion.id, 'appointment_id': appointment.id},
        )
        return suggestion, appointment

    def reject_suggestion(
        self,
        suggestion_id: str,
        acting_user_id: str,
        reason: str | None = None,
    ) -> AppointmentSuggestion:
        reason = reason.strip() if reason else None

        with transaction(self._session_factory) as session:
            suggestion = self._load_for_response(session, suggestion_id, acting_user_id)
            suggestion.status = SuggestionStatus.REJECTED.value
            if reason:
                suggestion.notes = reason
            suggestion.responded_at = datetime.now()

        logger.info('Suggestion %s rejected by %s', suggestion.id, acting_user_id)

        message = 'Your suggested appointment was declined'
        message += f': {reason}' if reason else '.'
        dispatch_safely(
            self._dispatcher.notify,
            suggestion.suggested_by,
            'suggestion_rejected',
            'Suggestion declined',
            message,
            {'suggestion_id': suggestion.id, 'reason': reason},
        )
        return suggestion

    def counter_suggestion(
        self,
        original_suggestion_id: str,
        acting_user_id: str,
        new_start: datetime,
        new_end: datetime,
        notes: str | None = None,
    ) -> AppointmentSuggestion:
        validate_window(new_start, new_end)

        with transaction(self._session_factory) as session:
            original = self._load_for_response(session, original_suggestion_id, acting_user_id)
            original.status = SuggestionStatus.COUNTERED.value
            original.responded_at = datetime.now()

            counter = AppointmentSuggestion(
                appointment_id=original.appointment_id,
                suggested_by=original.suggested_to,
                suggested_to=original.suggested_by,
                suggested_start_time=new_start,
                suggested_end_time=new_end,
                status=SuggestionStatus.PENDING.value,
                notes=notes or DEFAULT_COUNTER_NOTE,
                created_at=datetime.now(),
            )
            self._ensure_window_free(session, counter, new_start, new_end)
            session.add(counter)
            session.flush()

        logger.info('Suggestion %s countered by %s with %s', original.id, acting_user_id, counter.id)

        dispatch_safely(
            self._dispatcher.notify,
            original.suggested_by,
            'suggestion_countered',
            'Counter-proposal received',
            f'Another time was suggested: {format_when(new_start)}.',
            {'suggestion_id': counter.id, 'original_suggestion_id': original.id},
        )
        return counter

    def get_suggestion(self, suggestion_id: str) -> AppointmentSuggestion:
        with transaction(self._session_factory) as session:
            return self._load(session, suggestion_id)

    def list_for_user(self, user_id: str, direction: str = RECEIVED) -> list[AppointmentSuggestion]:
        if direction not in (SENT, RECEIVED):
            raise ValidationError("Direction must be 'sent' or 'received'.")
        column = AppointmentSuggestion.suggested_by if direction == SENT else AppointmentSuggestion.suggested_to

        with transaction(self._session_factory) as session:
            return (
                session.query(AppointmentSuggestion)
                .filter(column == user_id)
                .order_by(AppointmentSuggestion.created_at.desc())
                .all()
            )

    def list_for_appointment(self, appointment_id: str) -> list[AppointmentSuggestion]:
        with transaction(self._session_factory) as session:
            return (
                session.query(AppointmentSuggestion)
                .filter(AppointmentSuggestion.appointment_id == appointment_id)
                .order_by(AppointmentSuggestion.created_at.desc())
                .all()
            )
