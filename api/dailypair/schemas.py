from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .services.state_machine import COMPLETED, PENDING, SLOT_A_SUBMITTED, SLOT_B_SUBMITTED, UNRESOLVED_STATUSES

PairingStatusLiteral = Literal["pending", "slotA_submitted", "slotB_submitted", "completed", "flaked", "replaced"]
NotificationKind = Literal["matched", "partnerSubmitted", "completed", "flaked"]
PairingOrigin = Literal["daily", "late", "replacement"]


class ParticipantRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(min_length=1)
    active: bool
    last_active_at: datetime | None
    flake_streak: int = Field(ge=0)
    max_flake_streak: int = Field(ge=0)
    blocked_ids: frozenset[str]
    waitlisted_today: bool
    waitlisted_at: datetime | None = None
    priority_next_pairing: bool

    @model_validator(mode="after")
    def _check_streaks(self) -> "ParticipantRecord":
        if self.max_flake_streak < self.flake_streak:
            raise ValueError("max_flake_streak is below flake_streak")
        return self

    def blocks(self, other_id: str) -> bool:
        return other_id in self.blocked_ids


class PairingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(min_length=1)
    match_date: datetime
    expires_at: datetime
    slot_a_id: str = Field(min_length=1)
    slot_b_id: str = Field(min_length=1)
    status: PairingStatusLiteral
    slot_a_photo_ref: str | None = None
    slot_b_photo_ref: str | None = None
    slot_a_submitted_at: datetime | None = None
    slot_b_submitted_at: datetime | None = None
    completed_at: datetime | None = None
    flaked_at: datetime | None = None
    chat_ref: str | None = None
    meeting_link: str | None = None
    is_private: bool = False
    likes_count: int = Field(ge=0)
    liked_by: tuple[str, ...]
    comments_count: int = Field(ge=0)
    replaced_by: str | None = None
    replaced_from: str | None = None
    origin: PairingOrigin = "daily"
    version: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_invariants(self) -> "PairingRecord":
        if self.slot_a_id == self.slot_b_id:
            raise ValueError("pairing slots must hold two distinct participants")
        if self.expires_at <= self.match_date:
            raise ValueError("expires_at must be after match_date")
        if (self.slot_a_photo_ref is None) != (self.slot_a_submitted_at is None):
            raise ValueError("slot A photo reference and submission time must be set together")
        if (self.slot_b_photo_ref is None) != (self.slot_b_submitted_at is None):
            raise ValueError("slot B photo reference and submission time must be set together")
        if (self.completed_at is not None) != (self.status == COMPLETED):
            raise ValueError("completed_at must be set iff status is completed")

        a_done = self.slot_a_photo_ref is not None
        b_done = self.slot_b_photo_ref is not None
        expected = {
            PENDING: (False, False),
            SLOT_A_SUBMITTED: (True, False),
            SLOT_B_SUBMITTED: (False, True),
            COMPLETED: (True, True),
        }.get(self.status)
        if expected is not None and expected != (a_done, b_done):
            raise ValueError(f"status {self.status} disagrees with submitted slots")
        if len(set(self.liked_by)) != len(self.liked_by) or self.likes_count != len(self.liked_by):
            raise ValueError("likes_count disagrees with liked_by")
        return self

    @property
    def participants(self) -> tuple[str, str]:
        return (self.slot_a_id, self.slot_b_id)

    @property
    def is_unresolved(self) -> bool:
        return self.status in UNRESOLVED_STATUSES

    def slot_of(self, participant_id: str) -> str | None:
        if participant_id == self.slot_a_id:
            return "a"
        if participant_id == self.slot_b_id:
            return "b"
        return None

    def partner_of(self, participant_id: str) -> str | None:
        slot = self.slot_of(participant_id)
        if slot == "a":
            return self.slot_b_id
        if slot == "b":
            return self.slot_a_id
        return None


class CommentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    pairing_id: str
    participant_id: str
    body: str = Field(min_length=1)
    created_at: datetime


class NotificationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: str
    kind: NotificationKind
    pairing_id: str


class PhotoSubmissionRequest(BaseModel):
    photo_ref: str


class CommentRequest(BaseModel):
    body: str


class PrivacyRequest(BaseModel):
    is_private: bool


class ReplacePartnerRequest(BaseModel):
    keeper_id: str
