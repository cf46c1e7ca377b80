from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from ..schemas import ParticipantRecord


class NotEligible(str, Enum):
    """Why a participant sits out a run. An outcome, not an error."""

    INACTIVE = "inactive"
    STALE = "stale"
    FLAKE_STREAK = "flake_streak"


def ineligibility_reason(
    participant: ParticipantRecord,
    now: datetime,
    *,
    activity_window_days: int = 3,
    flake_streak_cutoff: int = 5,
) -> NotEligible | None:
    if not participant.active:
        return NotEligible.INACTIVE
    since = now - timedelta(days=activity_window_days)
    if participant.last_active_at is None or participant.last_active_at < since:
        return NotEligible.STALE
    if participant.flake_streak >= flake_streak_cutoff:
        return NotEligible.FLAKE_STREAK
    return None


def is_eligible(participant: ParticipantRecord, now: datetime, **kwargs) -> bool:
    return ineligibility_reason(participant, now, **kwargs) is None


def filter_eligible(
    participants: Iterable[ParticipantRecord],
    now: datetime,
    *,
    activity_window_days: int = 3,
    flake_streak_cutoff: int = 5,
) -> list[ParticipantRecord]:
    """Eligible subset, priority participants first; input order kept within each group."""
    eligible = [
        p
        for p in participants
        if ineligibility_reason(p, now, activity_window_days=activity_window_days, flake_streak_cutoff=flake_streak_cutoff) is None
    ]
    return [p for p in eligible if p.priority_next_pairing] + [p for p in eligible if not p.priority_next_pairing]


def eligibility_debug_counts(
    participants: Iterable[ParticipantRecord],
    now: datetime,
    *,
    activity_window_days: int = 3,
    flake_streak_cutoff: int = 5,
) -> dict[str, int]:
    counts = {"total": 0, "eligible": 0, "priority": 0}
    counts.update({reason.value: 0 for reason in NotEligible})
    for p in participants:
        counts["total"] += 1
        reason = ineligibility_reason(p, now, activity_window_days=activity_window_days, flake_streak_cutoff=flake_streak_cutoff)
        if reason is None:
            counts["eligible"] += 1
            if p.priority_next_pairing:
                counts["priority"] += 1
        else:
            counts[reason.value] += 1
    return counts
