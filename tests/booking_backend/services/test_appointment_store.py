from datetime import datetime, timedelta

import pytest

from booking_backend.core import config
from booking_backend.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NoFieldsError,
    NotFoundError,
    ValidationError,
)
from booking_backend.models.appointment import (
    ALLOWED_TRANSITIONS,
    AppointmentStatus,
    AppointmentType,
    LocationType,
)
from booking_backend.schemas.appointment import AppointmentCreate, AppointmentFilters, AppointmentPatch
from booking_backend.services.appointment_store import AppointmentStore

from conftest import CLIENT_ID, OTHER_CLIENT_ID, PROFESSIONAL_ID, FailingDispatcher


def test_create_defaults_to_scheduled(make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    assert appointment.id
    assert appointment.status == AppointmentStatus.SCHEDULED.value
    assert appointment.reminder_sent is False
    assert appointment.created_at == appointment.updated_at


def test_create_rejects_inverted_window(make_appointment) -> None:
    with pytest.raises(ValidationError):
        make_appointment(datetime(2025, 6, 1, 11, 0), datetime(2025, 6, 1, 11, 0))


def test_create_rejects_overlapping_active_appointment(make_appointment) -> None:
    make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    with pytest.raises(ConflictError):
        make_appointment(datetime(2025, 6, 1, 10, 30), datetime(2025, 6, 1, 11, 30), client_id=OTHER_CLIENT_ID)


def test_create_allows_back_to_back_appointments(make_appointment) -> None:
    make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))
    second = make_appointment(datetime(2025, 6, 1, 11, 0), datetime(2025, 6, 1, 12, 0), client_id=OTHER_CLIENT_ID)

    assert second.start_time == datetime(2025, 6, 1, 11, 0)


def test_online_appointment_requires_meeting_url(make_appointment) -> None:
    with pytest.raises(ValidationError):
        make_appointment(
            datetime(2025, 6, 1, 10, 0),
            datetime(2025, 6, 1, 11, 0),
            location_type=LocationType.ONLINE,
        )

    appointment = make_appointment(
        datetime(2025, 6, 1, 10, 0),
        datetime(2025, 6, 1, 11, 0),
        location_type=LocationType.ONLINE,
        meeting_url='https://meet.example.com/abc',
    )
    assert appointment.location_type == 'online'


def test_get_missing_appointment_raises_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.get('missing')


def test_update_merges_only_supplied_fields(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0), notes='bring ID')

    updated = store.update(appointment.id, AppointmentPatch(title='Follow-up'))

    assert updated.title == 'Follow-up'
    assert updated.notes == 'bring ID'
    assert updated.start_time == datetime(2025, 6, 1, 10, 0)
    assert updated.updated_at >= appointment.created_at


def test_update_can_clear_nullable_field(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0), notes='bring ID')

    updated = store.update(appointment.id, AppointmentPatch(notes=None))

    assert updated.notes is None


def test_update_refuses_to_clear_required_field(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    with pytest.raises(ValidationError):
        store.update(appointment.id, AppointmentPatch(title=None))


def test_update_with_empty_payload_raises_no_fields(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    with pytest.raises(NoFieldsError):
        store.update(appointment.id, AppointmentPatch())


def test_update_that_inverts_window_is_rejected(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    with pytest.raises(ValidationError):
        store.update(appointment.id, AppointmentPatch(end_time=datetime(2025, 6, 1, 9, 0)))

    assert store.get(appointment.id).end_time == datetime(2025, 6, 1, 11, 0)


def test_update_moving_into_busy_window_conflicts(store, make_appointment) -> None:
    make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))
    later = make_appointment(datetime(2025, 6, 1, 14, 0), datetime(2025, 6, 1, 15, 0), client_id=OTHER_CLIENT_ID)

    with pytest.raises(ConflictError):
        store.update(
            later.id,
            AppointmentPatch(start_time=datetime(2025, 6, 1, 10, 30), end_time=datetime(2025, 6, 1, 11, 30)),
        )


def test_update_missing_appointment_raises_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.update('missing', AppointmentPatch(title='x'))


def test_delete_removes_appointment(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    store.delete(appointment.id)

    with pytest.raises(NotFoundError):
        store.get(appointment.id)
    with pytest.raises(NotFoundError):
        store.delete(appointment.id)


TRANSITION_EDGES = [
    (current, target, target in ALLOWED_TRANSITIONS[current])
    for current in AppointmentStatus
    for target in AppointmentStatus
    if current != target
]


def _appointment_in_status(store: AppointmentStore, make_appointment, status: AppointmentStatus):
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))
    if status != AppointmentStatus.SCHEDULED:
        store.update(appointment.id, AppointmentPatch(status=status))
    return appointment


@pytest.mark.parametrize(('current', 'target', 'allowed'), TRANSITION_EDGES)
def test_status_transition_table(store, make_appointment, current, target, allowed: bool) -> None:
    appointment = _appointment_in_status(store, make_appointment, current)

    if allowed:
        updated = store.update(appointment.id, AppointmentPatch(status=target))
        assert updated.status == target.value
    else:
        with pytest.raises(InvalidTransitionError):
            store.update(appointment.id, AppointmentPatch(status=target))
        assert store.get(appointment.id).status == current.value


def test_terminal_states_have_no_outgoing_edges() -> None:
    for status in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW):
        assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_lifecycle_actions(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    assert store.confirm(appointment.id, acting_user_id=PROFESSIONAL_ID).status == 'confirmed'
    assert store.complete(appointment.id).status == 'completed'

    with pytest.raises(InvalidTransitionError):
        store.cancel(appointment.id, acting_user_id=CLIENT_ID)
    with pytest.raises(InvalidTransitionError):
        store.mark_no_show(appointment.id)


def test_confirming_twice_is_an_invalid_transition(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))
    store.confirm(appointment.id, acting_user_id=PROFESSIONAL_ID)

    with pytest.raises(InvalidTransitionError):
        store.confirm(appointment.id, acting_user_id=PROFESSIONAL_ID)


def test_cancel_notifies_counterparty_with_actor_name(store, dispatcher, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    store.cancel(appointment.id, acting_user_id=CLIENT_ID)

    assert len(dispatcher.notifications) == 1
    notification = dispatcher.notifications[0]
    assert notification['user_id'] == PROFESSIONAL_ID
    assert notification['type'] == 'appointment_cancelled'
    assert 'Chris Durand' in notification['message']
    assert '2025-06-01 10:00' in notification['message']


def test_confirm_without_actor_notifies_both_parties(store, dispatcher, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    store.confirm(appointment.id)

    assert {notification['user_id'] for notification in dispatcher.notifications} == {PROFESSIONAL_ID, CLIENT_ID}


def test_dispatch_failure_does_not_undo_cancel(session_factory, caplog) -> None:
    store = AppointmentStore(session_factory, FailingDispatcher())
    appointment = store.create(
        AppointmentCreate(
            professional_id=PROFESSIONAL_ID,
            client_id=CLIENT_ID,
            title='Signature',
            start_time=datetime(2025, 6, 1, 10, 0),
            end_time=datetime(2025, 6, 1, 11, 0),
        )
    )

    cancelled = store.cancel(appointment.id, acting_user_id=PROFESSIONAL_ID)

    assert cancelled.status == 'cancelled'
    assert store.get(appointment.id).status == 'cancelled'
    assert 'Notification dispatch failed' in caplog.text


def _seed_for_listing(make_appointment):
    make_appointment(
        datetime(2025, 6, 2, 9, 0), datetime(2025, 6, 2, 10, 0),
        title='Court hearing prep', appointment_type=AppointmentType.COURT, case_id='case-7',
    )
    make_appointment(
        datetime(2025, 6, 1, 9, 0), datetime(2025, 6, 1, 10, 0),
        title='Consultation', description='Discuss the LEASE contract',
    )
    make_appointment(
        datetime(2025, 6, 3, 9, 0), datetime(2025, 6, 3, 10, 0),
        title='Site visit', client_id=OTHER_CLIENT_ID,
        location_type=LocationType.CLIENT_LOCATION, location_address='12 Lease Street',
    )


def test_list_without_filters_orders_by_start(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    appointments, total = store.list_appointments()

    assert total == 3
    assert [appointment.start_time.day for appointment in appointments] == [1, 2, 3]


def test_list_filters_are_conjunctive(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    appointments, total = store.list_appointments(
        AppointmentFilters(appointment_type=AppointmentType.COURT, case_id='case-7')
    )
    assert total == 1
    assert appointments[0].title == 'Court hearing prep'

    _, total = store.list_appointments(AppointmentFilters(appointment_type=AppointmentType.COURT, client_id=OTHER_CLIENT_ID))
    assert total == 0


def test_list_search_is_case_insensitive_over_title_description_and_address(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    appointments, total = store.list_appointments(AppointmentFilters(search='lease'))

    assert total == 2
    assert {appointment.title for appointment in appointments} == {'Consultation', 'Site visit'}


def test_list_date_range_is_inclusive(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    _, total = store.list_appointments(
        AppointmentFilters(start_date=datetime(2025, 6, 2, 9, 0), end_date=datetime(2025, 6, 3, 9, 0))
    )

    assert total == 2


def test_list_total_ignores_pagination(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    appointments, total = store.list_appointments(AppointmentFilters(limit=1, offset=1))

    assert total == 3
    assert len(appointments) == 1
    assert appointments[0].start_time.day == 2


def test_party_and_case_shortcuts(store, make_appointment) -> None:
    _seed_for_listing(make_appointment)

    assert len(store.list_for_professional(PROFESSIONAL_ID)) == 3
    assert len(store.list_for_client(OTHER_CLIENT_ID)) == 1
    assert [appointment.case_id for appointment in store.list_for_case('case-7')] == ['case-7']


def test_upcoming_and_today(store, make_appointment) -> None:
    now = datetime(2025, 6, 2, 8, 0)
    _seed_for_listing(make_appointment)

    upcoming = store.upcoming(professional_id=PROFESSIONAL_ID, now=now)
    today = store.today(now=now)

    assert [appointment.start_time.day for appointment in upcoming] == [2, 3]
    assert [appointment.title for appointment in today] == ['Court hearing prep']


def test_stats_counts_by_status_type_and_time_bucket(store, make_appointment) -> None:
    # 2025-06-04 is a Wednesday.
    now = datetime(2025, 6, 4, 12, 0)
    first = make_appointment(datetime(2025, 6, 2, 9, 0), datetime(2025, 6, 2, 10, 0))
    make_appointment(datetime(2025, 6, 4, 15, 0), datetime(2025, 6, 4, 16, 0), appointment_type=AppointmentType.PHONE)
    make_appointment(datetime(2025, 6, 20, 9, 0), datetime(2025, 6, 20, 10, 0), client_id=OTHER_CLIENT_ID)
    make_appointment(datetime(2025, 7, 1, 9, 0), datetime(2025, 7, 1, 10, 0), client_id=OTHER_CLIENT_ID)
    store.cancel(first.id, acting_user_id=PROFESSIONAL_ID)

    stats = store.stats(professional_id=PROFESSIONAL_ID, now=now)

    assert stats.total == 4
    assert stats.scheduled == 3
    assert stats.cancelled == 1
    assert stats.confirmed == 0
    assert stats.by_type == {'consultation': 3, 'phone': 1}
    assert stats.upcoming == 3
    assert stats.today == 1
    assert stats.this_week == 2
    assert stats.this_month == 3

    client_stats = store.stats(client_id=OTHER_CLIENT_ID, now=now)
    assert client_stats.total == 2


def test_stats_on_empty_store(store) -> None:
    stats = store.stats(now=datetime(2025, 12, 15, 9, 0))

    assert stats.total == 0
    assert stats.this_month == 0
    assert stats.by_type == {}


def test_reminders_and_auto_complete(store, make_appointment) -> None:
    now = datetime(2025, 6, 1, 12, 0)
    past = make_appointment(datetime(2025, 6, 1, 9, 0), datetime(2025, 6, 1, 10, 0))
    soon = make_appointment(datetime(2025, 6, 1, 15, 0), datetime(2025, 6, 1, 16, 0))
    make_appointment(datetime(2025, 6, 5, 15, 0), datetime(2025, 6, 5, 16, 0))

    due = store.due_reminders(timedelta(hours=24), now=now)
    assert [appointment.id for appointment in due] == [soon.id]

    store.mark_reminder_sent(soon.id)
    assert store.due_reminders(timedelta(hours=24), now=now) == []

    assert store.auto_complete_past(now=now) == 1
    assert store.get(past.id).status == 'completed'
    assert store.get(soon.id).status == 'scheduled'


def test_send_due_reminders_notifies_both_parties_once(store, dispatcher, make_appointment, monkeypatch) -> None:
    monkeypatch.setattr(config, 'REMINDER_WINDOW_HOURS', 4)
    now = datetime(2025, 6, 1, 12, 0)
    soon = make_appointment(datetime(2025, 6, 1, 15, 0), datetime(2025, 6, 1, 16, 0))
    make_appointment(datetime(2025, 6, 1, 17, 0), datetime(2025, 6, 1, 18, 0))

    assert store.send_due_reminders(now=now) == 1
    assert store.send_due_reminders(now=now) == 0

    reminders = [n for n in dispatcher.notifications if n['type'] == 'appointment_reminder']
    assert {n['user_id'] for n in reminders} == {PROFESSIONAL_ID, CLIENT_ID}
    assert all(n['data']['appointment_id'] == soon.id for n in reminders)
    assert store.get(soon.id).reminder_sent is True


def test_failed_reminder_is_not_marked_sent(session_factory, caplog) -> None:
    store = AppointmentStore(session_factory, FailingDispatcher())
    now = datetime(2025, 6, 1, 12, 0)
    appointment = store.create(
        AppointmentCreate(
            professional_id=PROFESSIONAL_ID,
            client_id=CLIENT_ID,
            title='Signature',
            start_time=datetime(2025, 6, 1, 15, 0),
            end_time=datetime(2025, 6, 1, 16, 0),
        )
    )

    assert store.send_due_reminders(now=now) == 0
    assert store.get(appointment.id).reminder_sent is False
    assert [due.id for due in store.due_reminders(timedelta(hours=24), now=now)] == [appointment.id]
    assert 'Notification dispatch failed' in caplog.text


def test_past_active_lists_what_auto_complete_closes(store, make_appointment) -> None:
    now = datetime(2025, 6, 1, 12, 0)
    past = make_appointment(datetime(2025, 6, 1, 9, 0), datetime(2025, 6, 1, 10, 0))
    cancelled = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))
    store.cancel(cancelled.id)
    make_appointment(datetime(2025, 6, 1, 15, 0), datetime(2025, 6, 1, 16, 0))

    assert [appointment.id for appointment in store.past_active(now=now)] == [past.id]
    assert store.auto_complete_past(now=now) == 1
    assert store.past_active(now=now) == []


def test_update_with_timezone_aware_start_is_stored_as_naive_utc(store, make_appointment) -> None:
    appointment = make_appointment(datetime(2025, 6, 1, 10, 0), datetime(2025, 6, 1, 11, 0))

    updated = store.update(appointment.id, AppointmentPatch.model_validate({'start_time': '2025-06-01T09:30:00Z'}))

    assert updated.start_time == datetime(2025, 6, 1, 9, 30)
    assert updated.start_time.tzinfo is None
    assert store.get(appointment.id).end_time == datetime(2025, 6, 1, 11, 0)


def test_create_converts_utc_offset_before_storing(store) -> None:
    appointment = store.create(
        AppointmentCreate.model_validate(
            {
                'professional_id': PROFESSIONAL_ID,
                'client_id': CLIENT_ID,
                'title': 'Initial consultation',
                'start_time': '2025-06-01T10:00:00+02:00',
                'end_time': '2025-06-01T11:00:00+02:00',
            }
        )
    )

    assert appointment.start_time == datetime(2025, 6, 1, 8, 0)
    assert appointment.end_time == datetime(2025, 6, 1, 9, 0)


def test_aware_filter_dates_are_normalized() -> None:
    filters = AppointmentFilters.model_validate({'start_date': '2025-06-01T00:00:00-05:00'})

    assert filters.start_date == datetime(2025, 6, 1, 5, 0)
