from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterable

from ..schemas import ParticipantRecord
from .history import canonical_pair, partnered_recently


@dataclass
class MatchResult:
    pairs: list[tuple[ParticipantRecord, ParticipantRecord]] = field(default_factory=list)
    waitlist: list[ParticipantRecord] = field(default_factory=list)

    @property
    def matched_ids(self) -> set[str]:
        return {p.id for pair in self.pairs for p in pair}

    def as_id_pairs(self) -> list[tuple[str, str]]:
        return [(a.id, b.id) for a, b in self.pairs]


def blocked_either_way(a: ParticipantRecord, b: ParticipantRecord) -> bool:
    return a.blocks(b.id) or b.blocks(a.id)


def can_pair(a: ParticipantRecord, b: ParticipantRecord, history: dict[str, set[str]]) -> bool:
    if a.id == b.id:
        return False
    if blocked_either_way(a, b):
        return False
    return not partnered_recently(history, a.id, b.id)


def _greedy_within(
    pool: list[ParticipantRecord],
    history: dict[str, set[str]],
    matched: set[str],
    pairs: list[tuple[ParticipantRecord, ParticipantRecord]],
) -> None:
    for i, left in enumerate(pool):
        if left.id in matched:
            continue
        for right in pool[i + 1 :]:
            if right.id in matched:
                continue
            if can_pair(left, right, history):
                pairs.append((left, right))
                matched.add(left.id)
                matched.add(right.id)
                break


def _greedy_across(
    leftovers: list[ParticipantRecord],
    pool: list[ParticipantRecord],
    history: dict[str, set[str]],
    matched: set[str],
    pairs: list[tuple[ParticipantRecord, ParticipantRecord]],
) -> None:
    for left in leftovers:
        if left.id in matched:
            continue
        for right in pool:
            if right.id in matched:
                continue
            if can_pair(left, right, history):
                pairs.append((left, right))
                matched.add(left.id)
                matched.add(right.id)
                break


def match_participants(
    eligible: Iterable[ParticipantRecord],
    history: dict[str, set[str]],
    rng: random.Random | None = None,
) -> MatchResult:
    """Greedy pairing: priority among themselves, leftover priority against regular, then regular.

    Hard constraints are the block lists (either direction) and the trailing
    history. Anyone left over is waitlisted, priority participants first.
    """
    rng = rng or random.Random()
    seen: set[str] = set()
    priority: list[ParticipantRecord] = []
    regular: list[ParticipantRecord] = []
    for p in eligible:
        if p.id in seen:
            continue
        seen.add(p.id)
        (priority if p.priority_next_pairing else regular).append(p)

    rng.shuffle(priority)
    rng.shuffle(regular)

    matched: set[str] = set()
    pairs: list[tuple[ParticipantRecord, ParticipantRecord]] = []
    _greedy_within(priority, history, matched, pairs)
    _greedy_across(priority, regular, history, matched, pairs)
    _greedy_within(regular, history, matched, pairs)

    waitlist = [p for p in priority + regular if p.id not in matched]
    return MatchResult(pairs=pairs, waitlist=waitlist)


def validate_match_result(result: MatchResult, eligible_ids: Iterable[str], history: dict[str, set[str]]) -> None:
    expected = set(eligible_ids)
    covered: list[str] = [p.id for pair in result.pairs for p in pair] + [p.id for p in result.waitlist]
    if len(covered) != len(set(covered)):
        raise ValueError("a participant appears more than once in the match result")
    if set(covered) != expected:
        raise ValueError("match result does not cover the eligible pool exactly")
    for a, b in result.pairs:
        if not can_pair(a, b, history):
            raise ValueError(f"pair {canonical_pair(a.id, b.id)} violates a hard constraint")
