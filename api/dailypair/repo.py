import logging
import random
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, TypeVar

from pydantic import ValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .config import TXN_MAX_ATTEMPTS
from .errors import ConcurrentModification, MalformedRecord, PairingNotFound, ParticipantNotFound
from .models import Pairing, PairingComment, Participant
from .schemas import CommentRecord, PairingRecord, ParticipantRecord
from .services.state_machine import REPLACED, UNRESOLVED_STATUSES

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres serialization failure, deadlock, lock not available.
_CONFLICT_PGCODES = {"40001", "40P01", "55P03"}


def is_write_conflict(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _CONFLICT_PGCODES:
            return True
        return "database is locked" in str(exc.orig).lower()
    return False


def to_participant(row: Participant) -> ParticipantRecord:
    try:
        return ParticipantRecord.model_validate(row)
    except ValidationError as exc:
        raise MalformedRecord(f"participant {row.id} failed validation", participant_id=row.id, errors=exc.errors(include_url=False, include_context=False, include_input=False)) from exc


def to_pairing(row: Pairing) -> PairingRecord:
    try:
        return PairingRecord.model_validate(row)
    except ValidationError as exc:
        raise MalformedRecord(f"pairing {row.id} failed validation", pairing_id=row.id, errors=exc.errors(include_url=False, include_context=False, include_input=False)) from exc


def to_comment(row: PairingComment) -> CommentRecord:
    try:
        return CommentRecord.model_validate(row)
    except ValidationError as exc:
        raise MalformedRecord(f"comment {row.id} failed validation", comment_id=row.id, errors=exc.errors(include_url=False, include_context=False, include_input=False)) from exc


def load_pairing_for_update(db: Session, pairing_id: str) -> Pairing:
    row = db.execute(select(Pairing).where(Pairing.id == pairing_id).with_for_update()).scalar_one_or_none()
    if row is None:
        raise PairingNotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
    to_pairing(row)
    return row


def load_participant_for_update(db: Session, participant_id: str) -> Participant:
    row = db.execute(select(Participant).where(Participant.id == participant_id).with_for_update()).scalar_one_or_none()
    if row is None:
        raise ParticipantNotFound(f"participant {participant_id} not found", participant_id=participant_id)
    to_participant(row)
    return row


def load_participants_for_update(db: Session, participant_ids: list[str]) -> dict[str, Participant]:
    if not participant_ids:
        return {}
    rows = db.execute(
        select(Participant).where(Participant.id.in_(sorted(set(participant_ids)))).order_by(Participant.id).with_for_update()
    ).scalars().all()
    found = {row.id: row for row in rows}
    for pid in participant_ids:
        if pid not in found:
            raise ParticipantNotFound(f"participant {pid} not found", participant_id=pid)
    return found


def pairing_ids_touching(db: Session, participant_id: str, since: datetime) -> list[str]:
    return list(
        db.execute(
            select(Pairing.id)
            .where(or_(Pairing.slot_a_id == participant_id, Pairing.slot_b_id == participant_id))
            .where(Pairing.match_date >= since)
            .where(Pairing.status != REPLACED)
        ).scalars()
    )


class Repository:
    """Pull-based access to participants and pairings over an injected session factory."""

    def __init__(self, session_factory: sessionmaker, max_attempts: int = TXN_MAX_ATTEMPTS) -> None:
        self.session_factory = session_factory
        self.max_attempts = max(1, int(max_attempts))

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self.session_factory() as db:
            yield db

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self.session_factory() as db:
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise

    def run_in_transaction(self, fn: Callable[[Session], T], *, label: str = "txn") -> T:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.transaction() as db:
                    return fn(db)
            except (StaleDataError, OperationalError) as exc:
                if not is_write_conflict(exc):
                    raise
                last_exc = exc
                logger.debug("[TXN] %s conflict on attempt %s/%s: %s", label, attempt, self.max_attempts, exc)
                if attempt < self.max_attempts:
                    time.sleep(random.uniform(0.0, 0.02 * attempt))
        logger.warning("[TXN] %s gave up after %s attempts", label, self.max_attempts)
        raise ConcurrentModification(f"{label} kept conflicting with concurrent writers", attempts=self.max_attempts) from last_exc

    def list_participants(self, *, only_active: bool = False) -> list[ParticipantRecord]:
        stmt = select(Participant).order_by(Participant.id)
        if only_active:
            stmt = stmt.where(Participant.active.is_(True))
        with self.session() as db:
            return [to_participant(row) for row in db.execute(stmt).scalars()]

    def get_participant(self, participant_id: str) -> ParticipantRecord:
        with self.session() as db:
            row = db.get(Participant, participant_id)
            if row is None:
                raise ParticipantNotFound(f"participant {participant_id} not found", participant_id=participant_id)
            return to_participant(row)

    def get_pairing(self, pairing_id: str) -> PairingRecord:
        with self.session() as db:
            row = db.get(Pairing, pairing_id)
            if row is None:
                raise PairingNotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
            return to_pairing(row)

    def list_pairings_since(self, since: datetime) -> list[PairingRecord]:
        stmt = select(Pairing).where(Pairing.match_date >= since).order_by(Pairing.match_date, Pairing.id)
        with self.session() as db:
            return [to_pairing(row) for row in db.execute(stmt).scalars()]

    def pairings_for_participant(self, participant_id: str, since: datetime | None = None) -> list[PairingRecord]:
        stmt = select(Pairing).where(or_(Pairing.slot_a_id == participant_id, Pairing.slot_b_id == participant_id))
        if since is not None:
            stmt = stmt.where(Pairing.match_date >= since)
        stmt = stmt.order_by(Pairing.match_date.desc(), Pairing.id)
        with self.session() as db:
            return [to_pairing(row) for row in db.execute(stmt).scalars()]

    def participants_paired_since(self, since: datetime) -> set[str]:
        stmt = select(Pairing.slot_a_id, Pairing.slot_b_id).where(Pairing.match_date >= since).where(Pairing.status != REPLACED)
        with self.session() as db:
            out: set[str] = set()
            for a, b in db.execute(stmt):
                out.add(a)
                out.add(b)
            return out

    def count_pairings_since(self, since: datetime, origin: str | None = None) -> int:
        stmt = select(func.count(Pairing.id)).where(Pairing.match_date >= since)
        if origin is not None:
            stmt = stmt.where(Pairing.origin == origin)
        with self.session() as db:
            return int(db.execute(stmt).scalar_one() or 0)

    def list_expired_unresolved_ids(self, now: datetime) -> list[str]:
        stmt = (
            select(Pairing.id)
            .where(Pairing.expires_at < now)
            .where(Pairing.status.in_(sorted(UNRESOLVED_STATUSES)))
            .order_by(Pairing.expires_at, Pairing.id)
        )
        with self.session() as db:
            return list(db.execute(stmt).scalars())

    def status_counts_for_participant(self, participant_id: str) -> dict[str, int]:
        stmt = (
            select(Pairing.status, func.count(Pairing.id))
            .where(or_(Pairing.slot_a_id == participant_id, Pairing.slot_b_id == participant_id))
            .group_by(Pairing.status)
        )
        with self.session() as db:
            return {str(status): int(count) for status, count in db.execute(stmt)}

    def list_comments(self, pairing_id: str) -> list[CommentRecord]:
        stmt = select(PairingComment).where(PairingComment.pairing_id == pairing_id).order_by(PairingComment.created_at, PairingComment.id)
        with self.session() as db:
            return [to_comment(row) for row in db.execute(stmt).scalars()]
