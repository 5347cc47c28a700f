import logging
from contextlib import contextmanager
from threading import Lock
from typing import Callable, Iterator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from booking_backend.core import config


logger = logging.getLogger(__name__)

_connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()

SessionFactory = Callable[[], Session]

_schema_lock = Lock()
_appointment_schema_checked = False
_suggestion_schema_checked = False


@contextmanager
def transaction(session_factory: SessionFactory) -> Iterator[Session]:
    """Open a session, commit when the block exits cleanly, roll back otherwise.

    The session is closed on every exit path, so the underlying connection is
    always handed back to the pool.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _appointment_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('reminder_sent', 'ALTER TABLE appointments ADD COLUMN reminder_sent BOOLEAN DEFAULT FALSE'),
            ('meeting_url', 'ALTER TABLE appointments ADD COLUMN meeting_url VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes TEXT'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    logger.info('Adding missing column appointments.%s', column_name)
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_professional_window '
                    'ON appointments(professional_id, start_time, end_time)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_time)')
            )

        _appointment_schema_checked = True


def ensure_suggestion_schema(bind: Engine | None = None) -> None:
    global _suggestion_schema_checked

    if _suggestion_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _suggestion_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'appointment_suggestions' not in inspector.get_table_names():
            _suggestion_schema_checked = True
            return

        with target.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_suggestions_to_status '
                    'ON appointment_suggestions(suggested_to, status)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_suggestions_appointment '
                    'ON appointment_suggestions(appointment_id)'
                )
            )

        _suggestion_schema_checked = True
