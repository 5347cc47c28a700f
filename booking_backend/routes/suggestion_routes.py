from datetime import date

from fastapi import APIRouter, Depends, Query, status

from booking_backend.auth.dependencies import ActingUser, get_current_user
from booking_backend.core import config
from booking_backend.routes.providers import get_negotiation_engine, get_slot_resolver
from booking_backend.schemas.appointment import AppointmentResponse
from booking_backend.schemas.suggestion import (
    AcceptSuggestionResponse,
    CounterSuggestionRequest,
    CreateSuggestionRequest,
    RejectSuggestionRequest,
    SlotResponse,
    SuggestionResponse,
)
from booking_backend.services.negotiation import RECEIVED, SENT, NegotiationEngine
from booking_backend.services.slot_resolver import SlotResolver

router = APIRouter(tags=['suggestions'], dependencies=[Depends(get_current_user)])


@router.post('', response_model=SuggestionResponse, status_code=status.HTTP_201_CREATED)
def create_suggestion(
    data: CreateSuggestionRequest,
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.create_suggestion(
        suggested_by=current_user.id,
        suggested_to=data.suggested_to,
        start=data.suggested_start_time,
        end=data.suggested_end_time,
        appointment_id=data.appointment_id,
        notes=data.notes,
    )


@router.get('/sent', response_model=list[SuggestionResponse])
def list_sent_suggestions(
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.list_for_user(current_user.id, SENT)


@router.get('/received', response_model=list[SuggestionResponse])
def list_received_suggestions(
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.list_for_user(current_user.id, RECEIVED)


@router.get('/appointment/{appointment_id}', response_model=list[SuggestionResponse])
def list_appointment_suggestions(
    appointment_id: str,
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.list_for_appointment(appointment_id)


@router.get('/available-slots/{professional_id}', response_model=list[SlotResponse])
def list_available_slots(
    professional_id: str,
    day: date = Query(..., alias='date'),
    duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=24 * 60),
    resolver: SlotResolver = Depends(get_slot_resolver),
):
    return [
        SlotResponse(start=slot.start, end=slot.end, label=slot.label)
        for slot in resolver.find_available_slots(professional_id, day, duration)
    ]


@router.post('/{suggestion_id}/accept', response_model=AcceptSuggestionResponse)
def accept_suggestion(
    suggestion_id: str,
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    suggestion, appointment = engine.accept_suggestion(suggestion_id, current_user.id)
    return AcceptSuggestionResponse(
        suggestion=SuggestionResponse.model_validate(suggestion),
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.post('/{suggestion_id}/reject', response_model=SuggestionResponse)
def reject_suggestion(
    suggestion_id: str,
    data: RejectSuggestionRequest,
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.reject_suggestion(suggestion_id, current_user.id, data.reason)


@router.post('/{suggestion_id}/counter', response_model=SuggestionResponse, status_code=status.HTTP_201_CREATED)
def counter_suggestion(
    suggestion_id: str,
    data: CounterSuggestionRequest,
    current_user: ActingUser = Depends(get_current_user),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    return engine.counter_suggestion(
        suggestion_id,
        current_user.id,
        data.suggested_start_time,
        data.suggested_end_time,
        data.notes,
    )
