from __future__ import annotations

import logging
import uuid
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ..config import EngineSettings
from ..models import Pairing
from ..repo import Repository, load_participants_for_update, to_pairing
from ..schemas import PairingRecord
from . import streaks
from .chat import ChatService
from .state_machine import PENDING

logger = logging.getLogger(__name__)

DAILY_RUN = "daily"
LATE_JOIN = "late"
REPLACEMENT = "replacement"

MATCH_JOB = "match"
REAP_JOB = "reap"


def local_day_start(now: datetime, tz: str) -> datetime:
    zone = ZoneInfo(tz)
    local_now = now.astimezone(zone)
    return datetime.combine(local_now.date(), time.min, tzinfo=zone).astimezone(timezone.utc)


def compute_expires_at(match_date: datetime, tz: str, deadline_hour: int) -> datetime:
    """Deadline hour on the local match day; rolls to the next day once that hour has passed."""
    zone = ZoneInfo(tz)
    local = match_date.astimezone(zone)
    deadline = datetime.combine(local.date(), time(hour=deadline_hour), tzinfo=zone)
    if deadline <= local:
        deadline = datetime.combine(local.date() + timedelta(days=1), time(hour=deadline_hour), tzinfo=zone)
    return deadline.astimezone(timezone.utc)


def scheduled_slot(job: str, now: datetime, settings: EngineSettings) -> datetime:
    """Today's local fire time for ``job``: the match hour, or the deadline plus the reap delay."""
    zone = ZoneInfo(settings.timezone)
    local_day = now.astimezone(zone).date()
    if job == MATCH_JOB:
        slot = datetime.combine(local_day, time(hour=settings.match_hour), tzinfo=zone)
    elif job == REAP_JOB:
        slot = datetime.combine(local_day, time(hour=settings.deadline_hour), tzinfo=zone) + timedelta(minutes=settings.reap_delay_minutes)
    else:
        raise ValueError(f"unknown job {job!r}")
    return slot.astimezone(timezone.utc)


def next_run_at(job: str, now: datetime, settings: EngineSettings) -> datetime:
    slot = scheduled_slot(job, now, settings)
    if slot > now:
        return slot
    tomorrow = now.astimezone(ZoneInfo(settings.timezone)) + timedelta(days=1)
    return scheduled_slot(job, tomorrow, settings)


def generate_meeting_link(pairing_id: str, base: str) -> str:
    return f"{base}{pairing_id}"


def new_pairing_row(
    db: Session,
    slot_a_id: str,
    slot_b_id: str,
    now: datetime,
    settings: EngineSettings,
    chat_service: ChatService,
    *,
    replaced_from: str | None = None,
    origin: str = DAILY_RUN,
) -> Pairing:
    if slot_a_id == slot_b_id:
        raise ValueError("a participant cannot be paired with themselves")
    pairing_id = str(uuid.uuid4())
    row = Pairing(
        id=pairing_id,
        match_date=now,
        expires_at=compute_expires_at(now, settings.timezone, settings.deadline_hour),
        slot_a_id=slot_a_id,
        slot_b_id=slot_b_id,
        status=PENDING,
        meeting_link=generate_meeting_link(pairing_id, settings.meeting_link_base),
        is_private=False,
        likes_count=0,
        liked_by=[],
        comments_count=0,
        replaced_from=replaced_from,
        origin=origin,
    )
    db.add(row)
    row.chat_ref = chat_service.create_channel(db, pairing_id, slot_a_id, slot_b_id)
    return row


def create_pairing(
    repo: Repository,
    slot_a_id: str,
    slot_b_id: str,
    now: datetime,
    settings: EngineSettings,
    chat_service: ChatService,
) -> PairingRecord:
    """Pairing, chat stub and both participants' flag updates commit together or not at all."""

    def _txn(db: Session) -> PairingRecord:
        participants = load_participants_for_update(db, [slot_a_id, slot_b_id])
        row = new_pairing_row(db, slot_a_id, slot_b_id, now, settings, chat_service, origin=DAILY_RUN)
        for p in participants.values():
            streaks.clear_waitlist(p)
        db.flush()
        return to_pairing(row)

    record = repo.run_in_transaction(_txn, label=f"create_pairing:{slot_a_id}:{slot_b_id}")
    logger.debug("[MATCH] created pairing %s (%s, %s) expires_at=%s", record.id, slot_a_id, slot_b_id, record.expires_at.isoformat())
    return record


def settle_waitlist(repo: Repository, waitlist_ids: list[str], now: datetime) -> int:
    """Close out a run's markers: flag today's waitlist, release every other leftover marker.

    Runs after the pairs are persisted, so a run that dies midway leaves the
    previous day's markers in place for the re-run.
    """

    def _txn(db: Session) -> int:
        streaks.consume_waitlist_markers(db, keep=waitlist_ids)
        participants = load_participants_for_update(db, waitlist_ids)
        for p in participants.values():
            streaks.mark_waitlisted(p, now)
        return len(participants)

    return repo.run_in_transaction(_txn, label="settle_waitlist")
