from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from booking_backend.auth.dependencies import ActingUser, get_current_user
from booking_backend.models.appointment import AppointmentStatus, AppointmentType
from booking_backend.routes.providers import get_appointment_store
from booking_backend.schemas.appointment import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentPatch,
    AppointmentResponse,
    AppointmentStats,
)
from booking_backend.services.appointment_store import AppointmentStore

router = APIRouter(tags=['appointments'], dependencies=[Depends(get_current_user)])


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.create(data)


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    appointment_type: AppointmentType | None = Query(default=None),
    professional_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    case_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    search: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int | None = Query(default=None, ge=0),
    store: AppointmentStore = Depends(get_appointment_store),
):
    filters = AppointmentFilters(
        status=status_filter,
        appointment_type=appointment_type,
        professional_id=professional_id,
        client_id=client_id,
        case_id=case_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=offset,
    )
    appointments, total = store.list_appointments(filters)
    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        total=total,
    )


@router.get('/stats', response_model=AppointmentStats)
def get_appointment_stats(
    professional_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.stats(professional_id=professional_id, client_id=client_id)


@router.get('/upcoming', response_model=list[AppointmentResponse])
def list_upcoming_appointments(
    current_user: ActingUser = Depends(get_current_user),
    store: AppointmentStore = Depends(get_appointment_store),
):
    professional_appointments = store.upcoming(professional_id=current_user.id)
    client_appointments = store.upcoming(client_id=current_user.id)
    return sorted(professional_appointments + client_appointments, key=lambda appointment: appointment.start_time)


@router.get('/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    current_user: ActingUser = Depends(get_current_user),
    store: AppointmentStore = Depends(get_appointment_store),
):
    professional_appointments = store.today(professional_id=current_user.id)
    client_appointments = store.today(client_id=current_user.id)
    return sorted(professional_appointments + client_appointments, key=lambda appointment: appointment.start_time)


@router.get('/professional/{professional_id}', response_model=list[AppointmentResponse])
def list_professional_appointments(
    professional_id: str,
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    store: AppointmentStore = Depends(get_appointment_store),
):
    filters = AppointmentFilters(status=status_filter, start_date=start_date, end_date=end_date)
    return store.list_for_professional(professional_id, filters)


@router.get('/client/{client_id}', response_model=list[AppointmentResponse])
def list_client_appointments(
    client_id: str,
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    store: AppointmentStore = Depends(get_appointment_store),
):
    filters = AppointmentFilters(status=status_filter, start_date=start_date, end_date=end_date)
    return store.list_for_client(client_id, filters)


@router.get('/case/{case_id}', response_model=list[AppointmentResponse])
def list_case_appointments(
    case_id: str,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.list_for_case(case_id)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.get(appointment_id)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    patch: AppointmentPatch,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.update(appointment_id, patch)


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: str,
    store: AppointmentStore = Depends(get_appointment_store),
):
    store.delete(appointment_id)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: str,
    current_user: ActingUser = Depends(get_current_user),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.confirm(appointment_id, acting_user_id=current_user.id)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    current_user: ActingUser = Depends(get_current_user),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.cancel(appointment_id, acting_user_id=current_user.id)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.complete(appointment_id)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_appointment_no_show(
    appointment_id: str,
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.mark_no_show(appointment_id)
