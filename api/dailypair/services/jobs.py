"""Scheduled entry points: the daily match run and the post-deadline expiry sweep."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from ..config import EngineSettings
from ..errors import EngineError, PartialBatchFailure
from ..repo import Repository
from ..schemas import NotificationEvent
from .chat import ChatService
from .eligibility import eligibility_debug_counts, filter_eligible
from .history import build_history_index, window_start
from .matching import match_participants
from .notifications import NotificationDispatcher, dispatch_after_commit
from .pairing_factory import DAILY_RUN, create_pairing, local_day_start, settle_waitlist
from .reaper import reap_expired

logger = logging.getLogger(__name__)


def run_daily_match(
    repo: Repository,
    now: datetime,
    settings: EngineSettings,
    chat_service: ChatService,
    dispatcher: NotificationDispatcher | None = None,
    rng: random.Random | None = None,
    force: bool = False,
) -> dict[str, Any]:
    match_day = now.astimezone(ZoneInfo(settings.timezone)).date()
    day_start = local_day_start(now, settings.timezone)

    existing = repo.count_pairings_since(day_start, origin=DAILY_RUN)
    if existing and not force:
        logger.info("[MATCH] %s already has %s pairings; skipping run", match_day, existing)
        return {
            "match_date": str(match_day),
            "created_pairings": 0,
            "existing_pairings": existing,
            "message": "Pairings already exist for today",
        }

    already_paired = repo.participants_paired_since(day_start)
    participants = repo.list_participants()
    consumed = [p.id for p in participants if p.waitlisted_today or p.priority_next_pairing]
    pool = [p for p in participants if p.id not in already_paired]
    filter_kwargs = {
        "activity_window_days": settings.activity_window_days,
        "flake_streak_cutoff": settings.flake_streak_cutoff,
    }
    eligibility_debug = eligibility_debug_counts(pool, now, **filter_kwargs)
    eligible = filter_eligible(pool, now, **filter_kwargs)

    history_records = repo.list_pairings_since(window_start(now, settings.history_window_days))
    history = build_history_index(history_records, [p.id for p in eligible], now, settings.history_window_days)
    result = match_participants(eligible, history, rng or random.Random(settings.match_seed))

    created_ids: list[str] = []
    unpersisted: list[str] = []
    for a, b in result.pairs:
        try:
            record = create_pairing(repo, a.id, b.id, now, settings, chat_service)
        except (EngineError, SQLAlchemyError) as exc:
            logger.error("[MATCH] could not persist pairing (%s, %s): %s", a.id, b.id, exc)
            unpersisted.extend([a.id, b.id])
            continue
        created_ids.append(record.id)
        dispatch_after_commit(
            dispatcher,
            [NotificationEvent(participant_id=pid, kind="matched", pairing_id=record.id) for pid in record.participants],
        )

    waitlist_ids = [p.id for p in result.waitlist] + unpersisted
    waitlisted = settle_waitlist(repo, waitlist_ids, now)

    logger.info(
        "[MATCH] date=%s eligible=%s pairs=%s waitlisted=%s consumed_markers=%s",
        match_day,
        len(eligible),
        len(created_ids),
        waitlisted,
        len(consumed),
    )
    return {
        "match_date": str(match_day),
        "eligible_participants": len(eligible),
        "created_pairings": len(created_ids),
        "pairing_ids": created_ids,
        "waitlisted": waitlist_ids,
        "failed_pairs": len(unpersisted) // 2,
        "consumed_waitlist_markers": len(consumed),
        "history_window_days": settings.history_window_days,
        "eligibility_debug": eligibility_debug,
        "forced": bool(force and existing),
    }


def reap_expired_pairings(
    repo: Repository,
    now: datetime,
    settings: EngineSettings,
    dispatcher: NotificationDispatcher | None = None,
) -> dict[str, Any]:
    try:
        summary = reap_expired(repo, now, mutation_limit=settings.reaper_batch_limit, dispatcher=dispatcher)
    except PartialBatchFailure as exc:
        logger.error("[REAPER] %s", exc.message)
        return {"status": "partial", "message": exc.message, **exc.summary.as_dict()}
    return {"status": "ok", **summary.as_dict()}
