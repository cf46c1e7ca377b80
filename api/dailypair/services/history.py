from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator

from ..schemas import PairingRecord


@dataclass(frozen=True)
class PartnerHistoryEntry:
    participant_id: str
    partner_id: str
    match_date: datetime


def canonical_pair(participant_a: str, participant_b: str) -> tuple[str, str]:
    return tuple(sorted((participant_a, participant_b)))


def window_start(now: datetime, window_days: int) -> datetime:
    return now - timedelta(days=window_days)


def history_entries(records: Iterable[PairingRecord], now: datetime, window_days: int = 7) -> Iterator[PartnerHistoryEntry]:
    since = window_start(now, window_days)
    for record in records:
        if record.match_date < since:
            continue
        yield PartnerHistoryEntry(record.slot_a_id, record.slot_b_id, record.match_date)
        yield PartnerHistoryEntry(record.slot_b_id, record.slot_a_id, record.match_date)


def build_history_index(
    records: Iterable[PairingRecord],
    eligible_ids: Iterable[str],
    now: datetime,
    window_days: int = 7,
) -> dict[str, set[str]]:
    """participant id -> partners seen inside the trailing window.

    Every eligible id gets an entry, even with no history.
    """
    index: dict[str, set[str]] = {pid: set() for pid in eligible_ids}
    for entry in history_entries(records, now, window_days):
        if entry.participant_id in index:
            index[entry.participant_id].add(entry.partner_id)
    return index


def partnered_recently(index: dict[str, set[str]], participant_a: str, participant_b: str) -> bool:
    return participant_b in index.get(participant_a, ()) or participant_a in index.get(participant_b, ())
