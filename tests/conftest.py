import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-enough-length-for-hs256')

from booking_backend.database import Base  # noqa: E402
from booking_backend.models import appointment, notification, suggestion  # noqa: E402,F401
from booking_backend.models.user import CLIENT_ROLE, PROFESSIONAL_ROLE, User  # noqa: E402
from booking_backend.schemas.appointment import AppointmentCreate  # noqa: E402
from booking_backend.services.appointment_store import AppointmentStore  # noqa: E402
from booking_backend.services.negotiation import NegotiationEngine  # noqa: E402
from booking_backend.services.notifications import NotificationDispatcher  # noqa: E402
from booking_backend.services.slot_resolver import SlotResolver  # noqa: E402

PROFESSIONAL_ID = 'prof-1'
CLIENT_ID = 'client-1'
OTHER_CLIENT_ID = 'client-2'


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.notifications: list[dict] = []
        self.emails: list[dict] = []

    def notify(self, user_id, notification_type, title, message, data=None):
        self.notifications.append(
            {'user_id': user_id, 'type': notification_type, 'title': title, 'message': message, 'data': data}
        )

    def send_email(self, user_id, subject, body):
        self.emails.append({'user_id': user_id, 'subject': subject, 'body': body})


class FailingDispatcher(NotificationDispatcher):
    def notify(self, *args, **kwargs):
        raise RuntimeError('notification service down')

    def send_email(self, *args, **kwargs):
        raise RuntimeError('mail relay down')


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)

    db = factory()
    try:
        db.add_all([
            User(id=PROFESSIONAL_ID, email='pro@example.com', first_name='Paula', last_name='Martin', role=PROFESSIONAL_ROLE),
            User(id=CLIENT_ID, email='client@example.com', first_name='Chris', last_name='Durand', role=CLIENT_ROLE),
            User(id=OTHER_CLIENT_ID, email='other@example.com', first_name='Alex', last_name='Petit', role=CLIENT_ROLE),
        ])
        db.commit()
    finally:
        db.close()

    return factory


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def store(session_factory, dispatcher):
    return AppointmentStore(session_factory, dispatcher)


@pytest.fixture
def resolver(session_factory):
    return SlotResolver(session_factory)


@pytest.fixture
def negotiation(session_factory, store, dispatcher):
    return NegotiationEngine(session_factory, store, dispatcher)


@pytest.fixture
def make_appointment(store):
    def _make(start: datetime, end: datetime, **overrides):
        data = {
            'professional_id': PROFESSIONAL_ID,
            'client_id': CLIENT_ID,
            'title': 'Initial consultation',
            'start_time': start,
            'end_time': end,
        }
        data.update(overrides)
        return store.create(AppointmentCreate(**data))

    return _make
