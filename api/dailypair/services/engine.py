"""Bundles the injected collaborators so routes and the CLI share one wiring."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import sessionmaker

from ..config import DEFAULT_SETTINGS, NOTIFICATION_DISPATCHER, EngineSettings
from ..repo import Repository
from ..schemas import CommentRecord, PairingRecord
from . import jobs, lifecycle, pairing_factory, replacement
from .chat import ChatService, SqlChatService
from .notifications import NotificationDispatcher, build_dispatcher


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PairingEngine:
    repo: Repository
    settings: EngineSettings = DEFAULT_SETTINGS
    chat_service: ChatService = field(default_factory=SqlChatService)
    dispatcher: NotificationDispatcher | None = None
    clock: Callable[[], datetime] = utcnow
    rng_factory: Callable[[], random.Random] | None = None

    @classmethod
    def from_session_factory(
        cls,
        session_factory: sessionmaker,
        settings: EngineSettings = DEFAULT_SETTINGS,
        dispatcher_kind: str = NOTIFICATION_DISPATCHER,
    ) -> "PairingEngine":
        return cls(
            repo=Repository(session_factory, max_attempts=settings.txn_max_attempts),
            settings=settings,
            dispatcher=build_dispatcher(dispatcher_kind, session_factory),
        )

    def _rng(self) -> random.Random:
        if self.rng_factory is not None:
            return self.rng_factory()
        return random.Random(self.settings.match_seed)

    # Jobs

    def run_daily_match(self, force: bool = False) -> dict[str, Any]:
        return jobs.run_daily_match(
            self.repo,
            self.clock(),
            self.settings,
            self.chat_service,
            self.dispatcher,
            rng=self._rng(),
            force=force,
        )

    def reap_expired_pairings(self) -> dict[str, Any]:
        return jobs.reap_expired_pairings(self.repo, self.clock(), self.settings, self.dispatcher)

    def schedule(self, job: str) -> dict[str, Any]:
        now = self.clock()
        slot = pairing_factory.scheduled_slot(job, now, self.settings)
        return {
            "job": job,
            "scheduled_slot": slot,
            "due": now >= slot,
            "next_run_at": pairing_factory.next_run_at(job, now, self.settings),
        }

    # Lifecycle

    def view_pairing(self, pairing_id: str, viewer_id: str | None = None) -> tuple[PairingRecord, list[CommentRecord]]:
        return lifecycle.view_pairing(self.repo, pairing_id, viewer_id)

    def submit_photo(self, pairing_id: str, participant_id: str, photo_ref: str) -> PairingRecord:
        return lifecycle.submit_photo(self.repo, pairing_id, participant_id, photo_ref, self.clock(), self.dispatcher)

    def toggle_reaction(self, pairing_id: str, participant_id: str) -> lifecycle.ReactionResult:
        return lifecycle.toggle_reaction(self.repo, pairing_id, participant_id)

    def add_comment(self, pairing_id: str, participant_id: str, body: str) -> CommentRecord:
        return lifecycle.add_comment(self.repo, pairing_id, participant_id, body, self.clock(), self.settings.comment_max_length)

    def set_privacy(self, pairing_id: str, participant_id: str, is_private: bool) -> PairingRecord:
        return lifecycle.set_privacy(self.repo, pairing_id, participant_id, is_private)

    def current_pairing_for(self, participant_id: str) -> PairingRecord | None:
        return lifecycle.current_pairing_for(self.repo, participant_id, self.clock(), self.settings.timezone)

    def participant_stats(self, participant_id: str) -> dict[str, int]:
        return lifecycle.participant_stats(self.repo, participant_id)

    # Repairs

    def replace_partner(self, pairing_id: str, keeper_id: str) -> PairingRecord:
        return replacement.replace_partner(
            self.repo, pairing_id, keeper_id, self.clock(), self.settings, self.chat_service, self.dispatcher
        )

    def pair_with_waitlisted(self, participant_id: str) -> PairingRecord:
        return replacement.pair_with_waitlisted(
            self.repo, participant_id, self.clock(), self.settings, self.chat_service, self.dispatcher
        )
