"""Best-effort notification dispatch.

Dispatch happens after the business transaction has committed. Every call
site goes through ``dispatch_safely`` so that a failing dispatcher is logged
and never reaches the caller.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from booking_backend.database import SessionFactory, transaction
from booking_backend.models.notification import Notification


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fire-and-forget sink for user-facing notifications."""

    def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        logger.info('Notification %s for user %s: %s', notification_type, user_id, title)

    def send_email(self, user_id: str, subject: str, body: str) -> None:
        # Outbound mail is delivered by an external service.
        logger.info('Email for user %s queued: %s', user_id, subject)


class DatabaseNotificationDispatcher(NotificationDispatcher):
    """Stores notifications in the ``notifications`` table, in its own transaction."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        with transaction(self._session_factory) as session:
            session.add(
                Notification(
                    user_id=user_id,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    data=data,
                    is_read=False,
                    created_at=datetime.now(),
                )
            )


def dispatch_safely(action: Callable[..., None], *args: Any, **kwargs: Any) -> bool:
    """Run one dispatch call; returns whether it went through."""
    try:
        action(*args, **kwargs)
    except Exception:
        logger.exception('Notification dispatch failed; continuing without it.')
        return False
    return True


def format_when(moment: datetime) -> str:
    return moment.strftime('%Y-%m-%d %H:%M')
