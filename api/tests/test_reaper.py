from datetime import timedelta

import pytest

from dailypair.errors import PartialBatchFailure
from dailypair.services import reaper
from dailypair.services.notifications import RecordingDispatcher
from dailypair.services.reaper import plan_batches, reap_expired

from conftest import NOW

AFTER_DEADLINE = NOW + timedelta(hours=18)


@pytest.fixture
def people(add_participant):
    add_participant("a", flake_streak=1, max_flake_streak=1)
    add_participant("b", flake_streak=3, max_flake_streak=4)
    add_participant("c")
    add_participant("d")


def test_pending_pairing_flakes_both_participants(repo, people, add_pairing):
    pairing_id = add_pairing("a", "b")
    dispatcher = RecordingDispatcher()

    summary = reap_expired(repo, AFTER_DEADLINE, dispatcher=dispatcher)

    assert summary.flaked == 1
    assert summary.penalized_participants == 2
    record = repo.get_pairing(pairing_id)
    assert record.status == "flaked"
    assert record.flaked_at == AFTER_DEADLINE
    a = repo.get_participant("a")
    b = repo.get_participant("b")
    assert (a.flake_streak, a.max_flake_streak) == (2, 2)
    assert (b.flake_streak, b.max_flake_streak) == (4, 4)
    assert sorted((e.participant_id, e.kind) for e in dispatcher.events) == [("a", "flaked"), ("b", "flaked")]


def test_submitter_is_not_penalized(repo, people, add_pairing):
    add_pairing("a", "b", status="slotA_submitted", slot_a_photo_ref="photos/a.jpg")
    reap_expired(repo, AFTER_DEADLINE)
    assert repo.get_participant("a").flake_streak == 1
    assert repo.get_participant("b").flake_streak == 4


def test_unexpired_and_resolved_pairings_are_untouched(repo, people, add_pairing):
    open_id = add_pairing("a", "b", expires_at=AFTER_DEADLINE + timedelta(hours=1))
    done_id = add_pairing("c", "d", status="completed", slot_a_photo_ref="x", slot_b_photo_ref="y")
    summary = reap_expired(repo, AFTER_DEADLINE)
    assert summary.candidates == 0
    assert repo.get_pairing(open_id).status == "pending"
    assert repo.get_pairing(done_id).status == "completed"


def test_rerun_is_idempotent(repo, people, add_pairing):
    add_pairing("a", "b")
    reap_expired(repo, AFTER_DEADLINE)
    second = reap_expired(repo, AFTER_DEADLINE + timedelta(minutes=5))
    assert second.candidates == 0
    assert second.flaked == 0
    assert repo.get_participant("a").flake_streak == 2


def test_batches_respect_mutation_limit(repo, add_participant, add_pairing):
    for i in range(14):
        add_participant(f"p{i:02d}")
    for i in range(0, 14, 2):
        add_pairing(f"p{i:02d}", f"p{i + 1:02d}")

    summary = reap_expired(repo, AFTER_DEADLINE, mutation_limit=6)

    assert summary.flaked == 7
    assert summary.batches_committed == 4
    assert plan_batches(list("abcdefg"), 6) == [["a", "b"], ["c", "d"], ["e", "f"], ["g"]]
    assert plan_batches(list("ab"), 1) == [["a"], ["b"]]


def test_failed_batch_keeps_committed_ones_and_rerun_finishes(monkeypatch, repo, add_participant, add_pairing):
    for i in range(6):
        add_participant(f"p{i}")
    ids = [add_pairing("p0", "p1"), add_pairing("p2", "p3"), add_pairing("p4", "p5")]

    original = reaper._flake_batch
    calls = {"n": 0}

    def _flaky(db, pairing_ids, now):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("write quota exceeded")
        return original(db, pairing_ids, now)

    monkeypatch.setattr(reaper, "_flake_batch", _flaky)
    with pytest.raises(RuntimeError):
        reap_expired(repo, AFTER_DEADLINE, mutation_limit=3)

    statuses = sorted(repo.get_pairing(pid).status for pid in ids)
    assert statuses == ["flaked", "pending", "pending"]

    monkeypatch.setattr(reaper, "_flake_batch", original)
    summary = reap_expired(repo, AFTER_DEADLINE, mutation_limit=3)
    assert summary.flaked == 2
    assert all(repo.get_pairing(pid).status == "flaked" for pid in ids)
    assert all(repo.get_participant(f"p{i}").flake_streak == 1 for i in range(6))


def test_engine_failures_are_collected_into_partial_batch_failure(monkeypatch, repo, add_participant, add_pairing):
    from sqlalchemy.exc import OperationalError

    for i in range(4):
        add_participant(f"p{i}")
    add_pairing("p0", "p1")
    add_pairing("p2", "p3")

    original = reaper._flake_batch
    calls = {"n": 0}

    def _flaky(db, pairing_ids, now):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE pairing", {}, Exception("disk I/O error"))
        return original(db, pairing_ids, now)

    monkeypatch.setattr(reaper, "_flake_batch", _flaky)
    with pytest.raises(PartialBatchFailure) as excinfo:
        reap_expired(repo, AFTER_DEADLINE, mutation_limit=3)

    summary = excinfo.value.summary
    assert summary.flaked == 1
    assert summary.batches_committed == 1
    assert len(summary.failed_batches) == 1
    assert summary.failed_batches[0]["error"] == "OperationalError"
