from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..errors import AlreadyTerminal, InvalidInput, NotAParticipant
from ..models import Pairing, PairingComment
from ..repo import Repository, load_pairing_for_update, load_participants_for_update, to_comment, to_pairing
from ..schemas import CommentRecord, NotificationEvent, PairingRecord
from . import streaks
from .notifications import NotificationDispatcher, dispatch_after_commit
from .pairing_factory import local_day_start
from .state_machine import COMPLETED, TERMINAL_STATUSES, UNRESOLVED_STATUSES, submit_action_for_slot, transition_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReactionResult:
    pairing_id: str
    liked: bool
    likes_count: int


def _slot_of(row: Pairing, participant_id: str) -> str:
    if participant_id == row.slot_a_id:
        return "a"
    if participant_id == row.slot_b_id:
        return "b"
    raise NotAParticipant(
        f"participant {participant_id} is not part of pairing {row.id}",
        pairing_id=row.id,
        participant_id=participant_id,
    )


def require_open(row: Pairing) -> None:
    if row.status in TERMINAL_STATUSES:
        raise AlreadyTerminal(f"pairing {row.id} is already {row.status}", pairing_id=row.id, status=row.status)


def submit_photo(
    repo: Repository,
    pairing_id: str,
    participant_id: str,
    photo_ref: str,
    now: datetime,
    dispatcher: NotificationDispatcher | None = None,
) -> PairingRecord:
    """Fill the caller's slot and advance the pairing in one transaction.

    Late submissions still count while the pairing is unresolved; only the
    reaper closes a pairing. A slot that already holds a photo is left as is.
    """
    photo_ref = str(photo_ref or "").strip()
    if not photo_ref:
        raise InvalidInput("photo_ref is required", pairing_id=pairing_id)

    def _txn(db: Session) -> tuple[PairingRecord, list[NotificationEvent]]:
        row = load_pairing_for_update(db, pairing_id)
        slot = _slot_of(row, participant_id)
        require_open(row)

        if getattr(row, f"slot_{slot}_photo_ref") is not None:
            return to_pairing(row), []

        setattr(row, f"slot_{slot}_photo_ref", photo_ref)
        setattr(row, f"slot_{slot}_submitted_at", now)
        row.status = transition_status(row.status, submit_action_for_slot(slot))

        events: list[NotificationEvent] = []
        if row.status == COMPLETED:
            row.completed_at = now
            participants = load_participants_for_update(db, [row.slot_a_id, row.slot_b_id])
            streaks.reset_on_completion(list(participants.values()))
            events = [NotificationEvent(participant_id=pid, kind="completed", pairing_id=row.id) for pid in (row.slot_a_id, row.slot_b_id)]
        else:
            partner_id = row.slot_b_id if slot == "a" else row.slot_a_id
            events = [NotificationEvent(participant_id=partner_id, kind="partnerSubmitted", pairing_id=row.id)]

        db.flush()
        return to_pairing(row), events

    record, events = repo.run_in_transaction(_txn, label=f"submit_photo:{pairing_id}")
    if events:
        logger.info("[LIFECYCLE] pairing=%s participant=%s status=%s", record.id, participant_id, record.status)
    dispatch_after_commit(dispatcher, events)
    return record


def toggle_reaction(repo: Repository, pairing_id: str, participant_id: str) -> ReactionResult:
    if not participant_id:
        raise InvalidInput("participant_id is required", pairing_id=pairing_id)

    def _txn(db: Session) -> ReactionResult:
        row = load_pairing_for_update(db, pairing_id)
        liked_by = [str(x) for x in (row.liked_by or [])]
        if participant_id in liked_by:
            liked_by.remove(participant_id)
            liked = False
        else:
            liked_by.append(participant_id)
            liked = True
        row.liked_by = liked_by
        row.likes_count = len(liked_by)
        db.flush()
        return ReactionResult(pairing_id=row.id, liked=liked, likes_count=row.likes_count)

    return repo.run_in_transaction(_txn, label=f"toggle_reaction:{pairing_id}")


def add_comment(repo: Repository, pairing_id: str, participant_id: str, body: str, now: datetime, max_length: int = 500) -> CommentRecord:
    text = str(body or "").strip()
    if not participant_id:
        raise InvalidInput("participant_id is required", pairing_id=pairing_id)
    if not text:
        raise InvalidInput("comment body cannot be empty", pairing_id=pairing_id)
    if len(text) > max_length:
        raise InvalidInput(f"comment body must be {max_length} characters or fewer", pairing_id=pairing_id)

    def _txn(db: Session) -> CommentRecord:
        row = load_pairing_for_update(db, pairing_id)
        comment = PairingComment(id=str(uuid.uuid4()), pairing_id=row.id, participant_id=participant_id, body=text, created_at=now)
        db.add(comment)
        row.comments_count = int(row.comments_count or 0) + 1
        db.flush()
        return to_comment(comment)

    return repo.run_in_transaction(_txn, label=f"add_comment:{pairing_id}")


def set_privacy(repo: Repository, pairing_id: str, participant_id: str, is_private: bool) -> PairingRecord:
    def _txn(db: Session) -> PairingRecord:
        row = load_pairing_for_update(db, pairing_id)
        _slot_of(row, participant_id)
        row.is_private = bool(is_private)
        db.flush()
        return to_pairing(row)

    return repo.run_in_transaction(_txn, label=f"set_privacy:{pairing_id}")


def view_pairing(repo: Repository, pairing_id: str, viewer_id: str | None) -> tuple[PairingRecord, list[CommentRecord]]:
    """A private pairing and its comments are visible to its two participants only."""
    record = repo.get_pairing(pairing_id)
    if record.is_private and viewer_id not in record.participants:
        raise NotAParticipant(
            f"pairing {pairing_id} is private",
            pairing_id=pairing_id,
            participant_id=viewer_id,
        )
    return record, repo.list_comments(pairing_id)


def current_pairing_for(repo: Repository, participant_id: str, now: datetime, tz: str) -> PairingRecord | None:
    todays = repo.pairings_for_participant(participant_id, since=local_day_start(now, tz))
    for record in todays:
        if record.status in UNRESOLVED_STATUSES:
            return record
    for record in todays:
        if record.status == COMPLETED:
            return record
    return None


def participant_stats(repo: Repository, participant_id: str) -> dict[str, int]:
    participant = repo.get_participant(participant_id)
    counts = repo.status_counts_for_participant(participant_id)
    return {
        "completed_pairings": counts.get("completed", 0),
        "flaked_pairings": counts.get("flaked", 0),
        "open_pairings": sum(counts.get(s, 0) for s in UNRESOLVED_STATUSES),
        "flake_streak": participant.flake_streak,
        "max_flake_streak": participant.max_flake_streak,
    }
