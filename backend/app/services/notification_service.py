"""
services/notification_service.py

Boundary between the scheduler and notification delivery.

The scheduler only decides *that* and *when* an event fires. It calls
`fire_event(case_id, event_kind, **context)` once per claimed effect; how the
event is rendered and delivered (email / SMS / push) is not decided here.

OutboxNotificationTrigger persists each event to `notification_events` in its
own session, so a delivery worker can pick it up later without holding the
scheduler's transaction open.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models import EventKind, NotificationEvent

logger = logging.getLogger(__name__)


class NotificationTrigger(Protocol):
    def fire_event(self, case_id: UUID, event_kind: EventKind, **context: Any) -> None:
        ...


class OutboxNotificationTrigger:
    """Writes one NotificationEvent row per fired event."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def fire_event(self, case_id: UUID, event_kind: EventKind, **context: Any) -> None:
        db = self._session_factory()
        try:
            event = NotificationEvent(
                case_id=case_id,
                event_kind=EventKind(event_kind),
                payload={k: _jsonable(v) for k, v in context.items()},
            )
            db.add(event)
            db.commit()
            logger.info(
                "notification_event_queued case=%s kind=%s id=%s",
                case_id, event.event_kind.value, event.id,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value
