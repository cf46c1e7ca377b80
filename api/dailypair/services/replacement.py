"""Same-day repairs: swapping a partner for a waitlisted participant, and pairing late joiners."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import EngineSettings
from ..errors import InvalidInput, NoReplacementAvailable, NotAParticipant
from ..models import Pairing, Participant
from ..repo import Repository, load_pairing_for_update, load_participant_for_update, pairing_ids_touching, to_pairing, to_participant
from ..schemas import NotificationEvent, PairingRecord, ParticipantRecord
from . import streaks
from .chat import ChatService
from .eligibility import ineligibility_reason
from .history import build_history_index, window_start
from .lifecycle import require_open
from .matching import can_pair
from .notifications import NotificationDispatcher, dispatch_after_commit
from .pairing_factory import LATE_JOIN, REPLACEMENT, local_day_start, new_pairing_row
from .state_machine import REPLACE, SLOT_A_SUBMITTED, transition_status

logger = logging.getLogger(__name__)


def _history_for(db: Session, subject_id: str, now: datetime, window_days: int) -> dict[str, set[str]]:
    since = window_start(now, window_days)
    rows = db.execute(select(Pairing).where(Pairing.match_date >= since)).scalars().all()
    return build_history_index([to_pairing(r) for r in rows], [subject_id], now, window_days)


def _first_waitlisted_partner(
    db: Session,
    subject: ParticipantRecord,
    exclude: set[str],
    now: datetime,
    settings: EngineSettings,
) -> Participant:
    history = _history_for(db, subject.id, now, settings.history_window_days)
    day_start = local_day_start(now, settings.timezone)
    rows = db.execute(
        select(Participant)
        .where(Participant.waitlisted_today.is_(True))
        .order_by(Participant.waitlisted_at, Participant.id)
        .with_for_update()
    ).scalars().all()
    for row in rows:
        if row.id in exclude or row.id == subject.id:
            continue
        candidate = to_participant(row)
        if not candidate.active:
            continue
        if not can_pair(subject, candidate, history):
            continue
        if pairing_ids_touching(db, candidate.id, day_start):
            continue
        return row
    raise NoReplacementAvailable(f"no waitlisted participant can be paired with {subject.id}", participant_id=subject.id)


def replace_partner(
    repo: Repository,
    pairing_id: str,
    keeper_id: str,
    now: datetime,
    settings: EngineSettings,
    chat_service: ChatService,
    dispatcher: NotificationDispatcher | None = None,
) -> PairingRecord:
    """Retire an unresolved pairing as ``replaced`` and re-pair the keeper with a waitlisted participant.

    The keeper's photo, if already submitted, carries over to the new pairing.
    The dropped partner goes onto the waitlist when still active.
    """

    def _txn(db: Session) -> tuple[PairingRecord, list[NotificationEvent]]:
        old = load_pairing_for_update(db, pairing_id)
        if keeper_id not in (old.slot_a_id, old.slot_b_id):
            raise NotAParticipant(f"participant {keeper_id} is not part of pairing {old.id}", pairing_id=old.id, participant_id=keeper_id)
        require_open(old)
        keeper_slot = "a" if keeper_id == old.slot_a_id else "b"
        dropped_id = old.slot_b_id if keeper_slot == "a" else old.slot_a_id

        keeper = load_participant_for_update(db, keeper_id)
        dropped = load_participant_for_update(db, dropped_id)
        partner = _first_waitlisted_partner(db, to_participant(keeper), {dropped_id}, now, settings)

        new = new_pairing_row(db, keeper_id, partner.id, now, settings, chat_service, replaced_from=old.id, origin=REPLACEMENT)
        photo_ref = getattr(old, f"slot_{keeper_slot}_photo_ref")
        if photo_ref is not None:
            new.slot_a_photo_ref = photo_ref
            new.slot_a_submitted_at = getattr(old, f"slot_{keeper_slot}_submitted_at")
            new.status = SLOT_A_SUBMITTED

        old.status = transition_status(old.status, REPLACE)
        old.replaced_by = new.id

        streaks.clear_waitlist(partner)
        streaks.clear_waitlist(keeper)
        if dropped.active:
            streaks.mark_waitlisted(dropped, now)

        db.flush()
        events = [NotificationEvent(participant_id=pid, kind="matched", pairing_id=new.id) for pid in (keeper_id, partner.id)]
        return to_pairing(new), events

    record, events = repo.run_in_transaction(_txn, label=f"replace_partner:{pairing_id}")
    logger.info("[LIFECYCLE] pairing=%s replaced by %s (%s, %s)", pairing_id, record.id, record.slot_a_id, record.slot_b_id)
    dispatch_after_commit(dispatcher, events)
    return record


def pair_with_waitlisted(
    repo: Repository,
    participant_id: str,
    now: datetime,
    settings: EngineSettings,
    chat_service: ChatService,
    dispatcher: NotificationDispatcher | None = None,
) -> PairingRecord:
    """Pair a participant who missed today's run with the longest-waiting compatible waitlisted participant."""

    def _txn(db: Session) -> tuple[PairingRecord, list[NotificationEvent]]:
        subject_row = load_participant_for_update(db, participant_id)
        subject = to_participant(subject_row)
        reason = ineligibility_reason(
            subject,
            now,
            activity_window_days=settings.activity_window_days,
            flake_streak_cutoff=settings.flake_streak_cutoff,
        )
        if reason is not None:
            raise InvalidInput(f"participant {participant_id} is not eligible: {reason.value}", participant_id=participant_id, reason=reason.value)
        if pairing_ids_touching(db, participant_id, local_day_start(now, settings.timezone)):
            raise InvalidInput(f"participant {participant_id} already has a pairing today", participant_id=participant_id)

        partner = _first_waitlisted_partner(db, subject, set(), now, settings)
        row = new_pairing_row(db, participant_id, partner.id, now, settings, chat_service, origin=LATE_JOIN)
        streaks.clear_waitlist(subject_row)
        streaks.clear_waitlist(partner)
        db.flush()
        events = [NotificationEvent(participant_id=pid, kind="matched", pairing_id=row.id) for pid in (participant_id, partner.id)]
        return to_pairing(row), events

    record, events = repo.run_in_transaction(_txn, label=f"pair_with_waitlisted:{participant_id}")
    logger.info("[MATCH] late pairing %s (%s, %s)", record.id, record.slot_a_id, record.slot_b_id)
    dispatch_after_commit(dispatcher, events)
    return record
