from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import EngineError, PartialBatchFailure
from ..models import Pairing
from ..repo import Repository, load_pairing_for_update, load_participants_for_update
from ..schemas import NotificationEvent
from . import streaks
from .notifications import NotificationDispatcher, dispatch_after_commit
from .state_machine import EXPIRE, UNRESOLVED_STATUSES, transition_status

logger = logging.getLogger(__name__)

# One mutation for the pairing plus at most one per penalized slot.
MAX_MUTATIONS_PER_PAIRING = 3


@dataclass
class ReapSummary:
    candidates: int = 0
    flaked: int = 0
    skipped: int = 0
    penalized_participants: int = 0
    batches_committed: int = 0
    failed_batches: list[dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "candidates": self.candidates,
            "flaked": self.flaked,
            "skipped": self.skipped,
            "penalized_participants": self.penalized_participants,
            "batches_committed": self.batches_committed,
            "failed_batches": list(self.failed_batches),
        }


@dataclass
class _BatchOutcome:
    flaked: int = 0
    skipped: int = 0
    penalized: int = 0
    events: list[NotificationEvent] = field(default_factory=list)


def plan_batches(pairing_ids: list[str], mutation_limit: int) -> list[list[str]]:
    """Split ids so no batch can exceed ``mutation_limit`` writes."""
    per_batch = max(1, mutation_limit // MAX_MUTATIONS_PER_PAIRING)
    return [pairing_ids[i : i + per_batch] for i in range(0, len(pairing_ids), per_batch)]


def _non_submitters(row: Pairing) -> list[str]:
    out = []
    if row.slot_a_photo_ref is None:
        out.append(row.slot_a_id)
    if row.slot_b_photo_ref is None:
        out.append(row.slot_b_id)
    return out


def _flake_batch(db: Session, pairing_ids: list[str], now: datetime) -> _BatchOutcome:
    outcome = _BatchOutcome()
    for pairing_id in pairing_ids:
        row = load_pairing_for_update(db, pairing_id)
        # Re-checked under lock: a late submission or an earlier run may have resolved it.
        if row.status not in UNRESOLVED_STATUSES or row.expires_at >= now:
            outcome.skipped += 1
            continue
        row.status = transition_status(row.status, EXPIRE)
        row.flaked_at = now

        flakers = _non_submitters(row)
        for participant in load_participants_for_update(db, flakers).values():
            streaks.record_flake(participant)
            outcome.penalized += 1

        outcome.flaked += 1
        outcome.events.extend(NotificationEvent(participant_id=pid, kind="flaked", pairing_id=row.id) for pid in (row.slot_a_id, row.slot_b_id))
    db.flush()
    return outcome


def reap_expired(
    repo: Repository,
    now: datetime,
    *,
    mutation_limit: int = 450,
    dispatcher: NotificationDispatcher | None = None,
) -> ReapSummary:
    """Flake every unresolved pairing past its deadline, one committed batch at a time.

    Raises ``PartialBatchFailure`` (carrying the summary) after all batches
    were attempted if any of them failed. Committed batches stay committed and
    a re-run only touches what is still unresolved.
    """
    summary = ReapSummary()
    pairing_ids = repo.list_expired_unresolved_ids(now)
    summary.candidates = len(pairing_ids)
    if not pairing_ids:
        logger.info("[REAPER] no expired pairings at %s", now.isoformat())
        return summary

    for index, batch in enumerate(plan_batches(pairing_ids, mutation_limit)):
        try:
            outcome = repo.run_in_transaction(lambda db, ids=batch: _flake_batch(db, ids, now), label=f"reap_batch:{index}")
        except (EngineError, SQLAlchemyError) as exc:
            logger.warning("[REAPER] batch %s (%s pairings) failed: %s", index, len(batch), exc)
            code = exc.code if isinstance(exc, EngineError) else type(exc).__name__
            summary.failed_batches.append({"batch": index, "size": len(batch), "error": code, "message": str(exc)})
            continue
        summary.batches_committed += 1
        summary.flaked += outcome.flaked
        summary.skipped += outcome.skipped
        summary.penalized_participants += outcome.penalized
        dispatch_after_commit(dispatcher, outcome.events)

    logger.info(
        "[REAPER] candidates=%s flaked=%s skipped=%s penalized=%s batches=%s failed=%s",
        summary.candidates,
        summary.flaked,
        summary.skipped,
        summary.penalized_participants,
        summary.batches_committed,
        len(summary.failed_batches),
    )
    if summary.failed_batches:
        raise PartialBatchFailure(
            f"{len(summary.failed_batches)} reaper batch(es) failed; re-run to finish",
            summary=summary,
            failed_batches=len(summary.failed_batches),
        )
    return summary
