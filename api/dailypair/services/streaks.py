"""Flake streak and waitlist bookkeeping.

Every function mutates ORM participant rows inside the caller's transaction
and never commits on its own.
"""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models import Participant


def reset_on_completion(participants: list[Participant]) -> None:
    for p in participants:
        p.flake_streak = 0


def record_flake(participant: Participant) -> int:
    participant.flake_streak = int(participant.flake_streak or 0) + 1
    participant.max_flake_streak = max(int(participant.max_flake_streak or 0), participant.flake_streak)
    return participant.flake_streak


def mark_waitlisted(participant: Participant, now: datetime) -> None:
    participant.waitlisted_today = True
    participant.waitlisted_at = now
    participant.priority_next_pairing = True


def clear_waitlist(participant: Participant) -> None:
    participant.waitlisted_today = False
    participant.priority_next_pairing = False


def consume_waitlist_markers(db: Session, keep: Iterable[str] = ()) -> list[str]:
    """Clear leftover markers for everyone outside ``keep``; returns whose markers were consumed."""
    query = select(Participant.id).where((Participant.waitlisted_today.is_(True)) | (Participant.priority_next_pairing.is_(True)))
    keep = list(keep)
    if keep:
        query = query.where(Participant.id.not_in(keep))
    flagged = list(db.execute(query).scalars())
    if flagged:
        db.execute(
            update(Participant)
            .where(Participant.id.in_(flagged))
            .values(waitlisted_today=False, priority_next_pairing=False)
            .execution_options(synchronize_session=False)
        )
    return flagged
