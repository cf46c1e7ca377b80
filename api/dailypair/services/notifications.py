import logging
import uuid
from abc import ABC, abstractmethod
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..models import NotificationOutbox
from ..schemas import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Receives lifecycle events after their transaction has committed."""

    @abstractmethod
    def dispatch(self, event: NotificationEvent) -> None: ...


class LoggingDispatcher(NotificationDispatcher):
    def dispatch(self, event: NotificationEvent) -> None:
        logger.info("[NOTIFY] %s -> participant=%s pairing=%s", event.kind, event.participant_id, event.pairing_id)


class OutboxDispatcher(NotificationDispatcher):
    """Queues events in ``notification_outbox`` for an external sender; one row per idempotency key."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @staticmethod
    def idempotency_key(event: NotificationEvent) -> str:
        return f"{event.pairing_id}:{event.participant_id}:{event.kind}"

    def dispatch(self, event: NotificationEvent) -> None:
        key = self.idempotency_key(event)
        with self.session_factory() as db:
            existing = db.execute(select(NotificationOutbox.id).where(NotificationOutbox.idempotency_key == key)).first()
            if existing:
                return
            db.add(
                NotificationOutbox(
                    id=str(uuid.uuid4()),
                    participant_id=event.participant_id,
                    pairing_id=event.pairing_id,
                    kind=event.kind,
                    idempotency_key=key,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()


class RecordingDispatcher(NotificationDispatcher):
    """Keeps dispatched events in memory; used by tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)


def dispatch_after_commit(dispatcher: NotificationDispatcher | None, events: Iterable[NotificationEvent]) -> int:
    """Fire-and-forget delivery. A failing dispatcher is logged and never propagates."""
    if dispatcher is None:
        return 0
    sent = 0
    for event in events:
        try:
            dispatcher.dispatch(event)
            sent += 1
        except Exception:
            logger.exception("[NOTIFY] dispatcher failed for %s participant=%s pairing=%s", event.kind, event.participant_id, event.pairing_id)
    return sent


def build_dispatcher(kind: str, session_factory: sessionmaker) -> NotificationDispatcher:
    if kind == "outbox":
        return OutboxDispatcher(session_factory)
    return LoggingDispatcher()
