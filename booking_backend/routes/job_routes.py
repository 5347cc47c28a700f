import logging

from fastapi import APIRouter, Depends

from booking_backend.auth.dependencies import require_admin
from booking_backend.routes.providers import get_appointment_store
from booking_backend.schemas.appointment import AppointmentResponse
from booking_backend.schemas.job import JobResult
from booking_backend.services.appointment_store import AppointmentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['jobs'], dependencies=[Depends(require_admin)])


@router.post('/auto-complete-appointments', response_model=JobResult)
def run_auto_complete(store: AppointmentStore = Depends(get_appointment_store)):
    count = store.auto_complete_past()
    logger.info('Auto-complete job finished: %d appointments', count)
    return JobResult(count=count, message=f'{count} appointment(s) marked as completed')


@router.get('/appointments-to-complete', response_model=list[AppointmentResponse])
def list_appointments_to_complete(store: AppointmentStore = Depends(get_appointment_store)):
    return store.past_active()


@router.post('/send-reminders', response_model=JobResult)
def run_send_reminders(store: AppointmentStore = Depends(get_appointment_store)):
    count = store.send_due_reminders()
    logger.info('Reminder job finished: %d appointments', count)
    return JobResult(count=count, message=f'{count} reminder(s) sent')
