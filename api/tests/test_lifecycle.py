import threading
from datetime import timedelta

import pytest

from dailypair.errors import AlreadyTerminal, InvalidInput, NotAParticipant, PairingNotFound
from dailypair.services import lifecycle
from dailypair.services.notifications import RecordingDispatcher

from conftest import NOW


@pytest.fixture
def pair(add_participant, add_pairing):
    add_participant("a", flake_streak=2, max_flake_streak=3)
    add_participant("b", flake_streak=1)
    return add_pairing("a", "b")


def test_submit_unknown_pairing(repo):
    with pytest.raises(PairingNotFound):
        lifecycle.submit_photo(repo, "missing", "a", "photos/a.jpg", NOW)


def test_submit_by_outsider(repo, pair):
    with pytest.raises(NotAParticipant):
        lifecycle.submit_photo(repo, pair, "mallory", "photos/m.jpg", NOW)


def test_submit_requires_photo_reference(repo, pair):
    with pytest.raises(InvalidInput):
        lifecycle.submit_photo(repo, pair, "a", "   ", NOW)


def test_submit_on_terminal_pairing(repo, add_participant, add_pairing):
    add_participant("a")
    add_participant("b")
    for status in ("flaked", "replaced"):
        pairing_id = add_pairing("a", "b", status=status)
        with pytest.raises(AlreadyTerminal):
            lifecycle.submit_photo(repo, pairing_id, "a", "photos/a.jpg", NOW)


def test_first_submission_notifies_partner(repo, pair):
    dispatcher = RecordingDispatcher()
    record = lifecycle.submit_photo(repo, pair, "a", "photos/a.jpg", NOW, dispatcher)

    assert record.status == "slotA_submitted"
    assert record.slot_a_photo_ref == "photos/a.jpg"
    assert record.slot_a_submitted_at == NOW
    assert record.completed_at is None
    assert [(e.participant_id, e.kind) for e in dispatcher.events] == [("b", "partnerSubmitted")]
    assert repo.get_participant("a").flake_streak == 2


def test_second_submission_completes_and_resets_streaks(repo, pair):
    dispatcher = RecordingDispatcher()
    lifecycle.submit_photo(repo, pair, "b", "photos/b.jpg", NOW)
    record = lifecycle.submit_photo(repo, pair, "a", "photos/a.jpg", NOW + timedelta(minutes=5), dispatcher)

    assert record.status == "completed"
    assert record.completed_at == NOW + timedelta(minutes=5)
    assert record.slot_b_photo_ref == "photos/b.jpg"
    a = repo.get_participant("a")
    assert a.flake_streak == 0
    assert a.max_flake_streak == 3
    assert repo.get_participant("b").flake_streak == 0
    assert sorted((e.participant_id, e.kind) for e in dispatcher.events) == [("a", "completed"), ("b", "completed")]


def test_resubmitting_filled_slot_is_noop(repo, pair):
    dispatcher = RecordingDispatcher()
    first = lifecycle.submit_photo(repo, pair, "a", "photos/a.jpg", NOW)
    again = lifecycle.submit_photo(repo, pair, "a", "photos/other.jpg", NOW + timedelta(minutes=1), dispatcher)
    assert again.slot_a_photo_ref == "photos/a.jpg"
    assert again.slot_a_submitted_at == first.slot_a_submitted_at
    assert again.version == first.version
    assert dispatcher.events == []


def test_late_submission_before_reap_still_completes(repo, add_participant, add_pairing):
    add_participant("a")
    add_participant("b")
    pairing_id = add_pairing("a", "b", expires_at=NOW + timedelta(hours=1))
    lifecycle.submit_photo(repo, pairing_id, "a", "photos/a.jpg", NOW)
    record = lifecycle.submit_photo(repo, pairing_id, "b", "photos/b.jpg", NOW + timedelta(hours=1, minutes=2))
    assert record.status == "completed"


def test_failing_dispatcher_does_not_abort_submission(repo, pair):
    class _Exploding(RecordingDispatcher):
        def dispatch(self, event):
            raise RuntimeError("push service down")

    record = lifecycle.submit_photo(repo, pair, "a", "photos/a.jpg", NOW, _Exploding())
    assert record.status == "slotA_submitted"
    assert repo.get_pairing(pair).status == "slotA_submitted"


def test_concurrent_partner_submission_is_not_lost(monkeypatch, repo, pair):
    original = lifecycle.load_pairing_for_update
    seen: list[str] = []

    def _racing_load(db, pairing_id):
        row = original(db, pairing_id)
        seen.append(row.status)
        if len(seen) == 1:
            # Partner commits between our read and our write.
            lifecycle.submit_photo(repo, pairing_id, "b", "photos/b.jpg", NOW)
        return row

    monkeypatch.setattr(lifecycle, "load_pairing_for_update", _racing_load)
    record = lifecycle.submit_photo(repo, pair, "a", "photos/a.jpg", NOW)

    assert seen == ["pending", "pending", "slotB_submitted"]
    assert record.status == "completed"
    assert record.slot_a_photo_ref == "photos/a.jpg"
    assert record.slot_b_photo_ref == "photos/b.jpg"


def test_simultaneous_submissions_always_complete(repo, pair):
    barrier = threading.Barrier(2)
    errors: list[Exception] = []

    def _submit(pid):
        barrier.wait()
        try:
            lifecycle.submit_photo(repo, pair, pid, f"photos/{pid}.jpg", NOW)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_submit, args=(pid,)) for pid in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    record = repo.get_pairing(pair)
    assert record.status == "completed"
    assert record.slot_a_photo_ref == "photos/a.jpg"
    assert record.slot_b_photo_ref == "photos/b.jpg"
    assert record.completed_at is not None


def test_toggle_reaction_likes_then_unlikes(repo, pair):
    liked = lifecycle.toggle_reaction(repo, pair, "viewer")
    assert liked.liked is True and liked.likes_count == 1
    lifecycle.toggle_reaction(repo, pair, "other")
    unliked = lifecycle.toggle_reaction(repo, pair, "viewer")
    assert unliked.liked is False and unliked.likes_count == 1
    assert repo.get_pairing(pair).liked_by == ("other",)


def test_concurrent_reactions_do_not_lose_updates(repo, pair):
    barrier = threading.Barrier(4)

    def _like(pid):
        barrier.wait()
        lifecycle.toggle_reaction(repo, pair, pid)

    threads = [threading.Thread(target=_like, args=(f"v{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    record = repo.get_pairing(pair)
    assert record.likes_count == 4
    assert sorted(record.liked_by) == ["v0", "v1", "v2", "v3"]


def test_add_comment_counts_and_validates(repo, pair):
    comment = lifecycle.add_comment(repo, pair, "viewer", "  nice one  ", NOW)
    assert comment.body == "nice one"
    assert repo.get_pairing(pair).comments_count == 1
    assert [c.id for c in repo.list_comments(pair)] == [comment.id]

    with pytest.raises(InvalidInput):
        lifecycle.add_comment(repo, pair, "viewer", "", NOW)
    with pytest.raises(InvalidInput):
        lifecycle.add_comment(repo, pair, "viewer", "x" * 11, NOW, max_length=10)
    with pytest.raises(PairingNotFound):
        lifecycle.add_comment(repo, "missing", "viewer", "hi", NOW)


def test_reactions_and_comments_allowed_on_terminal_pairing(repo, add_participant, add_pairing):
    add_participant("a")
    add_participant("b")
    pairing_id = add_pairing("a", "b", status="flaked")
    assert lifecycle.toggle_reaction(repo, pairing_id, "viewer").likes_count == 1
    lifecycle.add_comment(repo, pairing_id, "viewer", "next time!", NOW)
    assert repo.get_pairing(pairing_id).status == "flaked"


def test_set_privacy_only_by_participants(repo, pair):
    assert lifecycle.set_privacy(repo, pair, "a", True).is_private is True
    with pytest.raises(NotAParticipant):
        lifecycle.set_privacy(repo, pair, "mallory", False)


def test_private_pairing_visible_to_participants_only(repo, pair):
    record, comments = lifecycle.view_pairing(repo, pair, None)
    assert record.id == pair and comments == []

    lifecycle.set_privacy(repo, pair, "b", True)
    assert lifecycle.view_pairing(repo, pair, "a")[0].is_private is True
    with pytest.raises(NotAParticipant):
        lifecycle.view_pairing(repo, pair, "mallory")
    with pytest.raises(NotAParticipant):
        lifecycle.view_pairing(repo, pair, None)
    with pytest.raises(PairingNotFound):
        lifecycle.view_pairing(repo, "missing", "a")


def test_current_pairing_prefers_open_over_replaced(repo, add_participant, add_pairing, settings):
    add_participant("a")
    add_participant("b")
    add_participant("c")
    add_pairing("a", "b", status="replaced", match_date=NOW)
    open_id = add_pairing("a", "c", match_date=NOW + timedelta(minutes=1))
    add_pairing("a", "b", status="flaked", match_date=NOW - timedelta(days=1))

    current = lifecycle.current_pairing_for(repo, "a", NOW + timedelta(hours=2), settings.timezone)
    assert current is not None and current.id == open_id
    assert lifecycle.current_pairing_for(repo, "a", NOW + timedelta(days=2), settings.timezone) is None


def test_participant_stats(repo, add_participant, add_pairing):
    add_participant("a", flake_streak=1, max_flake_streak=4)
    add_participant("b")
    add_pairing("a", "b", status="completed", slot_a_photo_ref="x", slot_b_photo_ref="y")
    add_pairing("a", "b", status="flaked")
    add_pairing("a", "b")
    assert lifecycle.participant_stats(repo, "a") == {
        "completed_pairings": 1,
        "flaked_pairings": 1,
        "open_pairings": 1,
        "flake_streak": 1,
        "max_flake_streak": 4,
    }
