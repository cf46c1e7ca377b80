import uuid
from datetime import datetime, timedelta, timezone

import pytest

from dailypair.config import EngineSettings
from dailypair.database import create_schema, make_session_factory
from dailypair.models import Pairing, Participant
from dailypair.repo import Repository
from dailypair.services.chat import SqlChatService
from dailypair.services.engine import PairingEngine
from dailypair.services.notifications import RecordingDispatcher

# 05:00 in Los Angeles (PDT) on a match day.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def session_factory(tmp_path):
    factory = make_session_factory(f"sqlite:///{tmp_path / 'dailypair.db'}")
    create_schema(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def repo(session_factory):
    return Repository(session_factory, max_attempts=5)


@pytest.fixture
def settings():
    return EngineSettings(
        timezone="America/Los_Angeles",
        deadline_hour=22,
        match_hour=5,
        reap_delay_minutes=5,
        activity_window_days=3,
        flake_streak_cutoff=5,
        history_window_days=7,
        reaper_batch_limit=450,
        txn_max_attempts=5,
        match_seed=7,
        meeting_link_base="https://meet.jit.si/DailyPair-",
        comment_max_length=500,
    )


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def engine(repo, settings, dispatcher, clock):
    return PairingEngine(repo=repo, settings=settings, chat_service=SqlChatService(), dispatcher=dispatcher, clock=clock)


@pytest.fixture
def add_participant(session_factory):
    def _add(
        participant_id: str,
        *,
        active: bool = True,
        last_active_at: datetime | None = NOW - timedelta(hours=2),
        flake_streak: int = 0,
        max_flake_streak: int | None = None,
        blocked_ids=(),
        waitlisted_today: bool = False,
        waitlisted_at: datetime | None = None,
        priority_next_pairing: bool = False,
    ) -> str:
        with session_factory() as db:
            db.add(
                Participant(
                    id=participant_id,
                    active=active,
                    last_active_at=last_active_at,
                    flake_streak=flake_streak,
                    max_flake_streak=flake_streak if max_flake_streak is None else max_flake_streak,
                    blocked_ids=list(blocked_ids),
                    waitlisted_today=waitlisted_today,
                    waitlisted_at=waitlisted_at if waitlisted_at or not waitlisted_today else NOW - timedelta(days=1),
                    priority_next_pairing=priority_next_pairing,
                )
            )
            db.commit()
        return participant_id

    return _add


@pytest.fixture
def add_pairing(session_factory):
    def _add(
        slot_a_id: str,
        slot_b_id: str,
        *,
        match_date: datetime = NOW,
        expires_at: datetime | None = None,
        status: str = "pending",
        slot_a_photo_ref: str | None = None,
        slot_b_photo_ref: str | None = None,
        pairing_id: str | None = None,
        origin: str = "daily",
    ) -> str:
        pairing_id = pairing_id or str(uuid.uuid4())
        submitted = match_date + timedelta(hours=1)
        with session_factory() as db:
            db.add(
                Pairing(
                    id=pairing_id,
                    match_date=match_date,
                    expires_at=expires_at or match_date + timedelta(hours=17),
                    slot_a_id=slot_a_id,
                    slot_b_id=slot_b_id,
                    status=status,
                    slot_a_photo_ref=slot_a_photo_ref,
                    slot_a_submitted_at=submitted if slot_a_photo_ref else None,
                    slot_b_photo_ref=slot_b_photo_ref,
                    slot_b_submitted_at=submitted if slot_b_photo_ref else None,
                    completed_at=submitted if status == "completed" else None,
                    chat_ref=f"chat_{pairing_id}",
                    liked_by=[],
                    origin=origin,
                )
            )
            db.commit()
        return pairing_id

    return _add
