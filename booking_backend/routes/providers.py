from functools import lru_cache

from booking_backend.database import SessionLocal
from booking_backend.services.appointment_store import AppointmentStore
from booking_backend.services.negotiation import NegotiationEngine
from booking_backend.services.notifications import DatabaseNotificationDispatcher, NotificationDispatcher
from booking_backend.services.slot_resolver import SlotResolver


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return DatabaseNotificationDispatcher(SessionLocal)


@lru_cache
def get_appointment_store() -> AppointmentStore:
    return AppointmentStore(SessionLocal, get_dispatcher())


@lru_cache
def get_slot_resolver() -> SlotResolver:
    return SlotResolver(SessionLocal)


@lru_cache
def get_negotiation_engine() -> NegotiationEngine:
    return NegotiationEngine(SessionLocal, get_appointment_store(), get_dispatcher())
