import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, TypeDecorator, UniqueConstraint
from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC and always hands back aware UTC datetimes (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to UTCDateTime column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Participant(Base):
    __tablename__ = "participant"

    id = Column(String, primary_key=True, default=_new_id)
    active = Column(Boolean, nullable=False, default=True)
    last_active_at = Column(UTCDateTime, nullable=True)
    flake_streak = Column(Integer, nullable=False, default=0)
    max_flake_streak = Column(Integer, nullable=False, default=0)
    blocked_ids = Column(JSON, nullable=False, default=list)
    waitlisted_today = Column(Boolean, nullable=False, default=False)
    waitlisted_at = Column(UTCDateTime, nullable=True)
    priority_next_pairing = Column(Boolean, nullable=False, default=False)
    updated_at = Column(UTCDateTime, nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        Index("idx_participant_active_last_active", "active", "last_active_at"),
        Index("idx_participant_waitlisted", "waitlisted_today"),
    )


class Pairing(Base):
    __tablename__ = "pairing"

    id = Column(String, primary_key=True, default=_new_id)
    match_date = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    slot_a_id = Column(String, ForeignKey("participant.id"), nullable=False)
    slot_b_id = Column(String, ForeignKey("participant.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    slot_a_photo_ref = Column(String, nullable=True)
    slot_b_photo_ref = Column(String, nullable=True)
    slot_a_submitted_at = Column(UTCDateTime, nullable=True)
    slot_b_submitted_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    flaked_at = Column(UTCDateTime, nullable=True)
    chat_ref = Column(String, nullable=True)
    meeting_link = Column(String, nullable=True)
    is_private = Column(Boolean, nullable=False, default=False)
    likes_count = Column(Integer, nullable=False, default=0)
    liked_by = Column(JSON, nullable=False, default=list)
    comments_count = Column(Integer, nullable=False, default=0)
    replaced_by = Column(String, nullable=True)
    replaced_from = Column(String, nullable=True)
    origin = Column(String, nullable=False, default="daily")
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_pairing_match_date", "match_date"),
        Index("idx_pairing_status_expires", "status", "expires_at"),
        Index("idx_pairing_slot_a", "slot_a_id"),
        Index("idx_pairing_slot_b", "slot_b_id"),
    )


class PairingComment(Base):
    __tablename__ = "pairing_comment"

    id = Column(String, primary_key=True, default=_new_id)
    pairing_id = Column(String, ForeignKey("pairing.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_now_utc)

    __table_args__ = (Index("idx_pairing_comment_pairing_id", "pairing_id"),)


class ChatChannel(Base):
    __tablename__ = "chat_channel"

    id = Column(String, primary_key=True, default=_new_id)
    pairing_id = Column(String, ForeignKey("pairing.id", ondelete="CASCADE"), nullable=False)
    participant_a_id = Column(String, nullable=False)
    participant_b_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_now_utc)

    __table_args__ = (UniqueConstraint("pairing_id", name="uq_chat_channel_pairing"),)


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id = Column(String, primary_key=True, default=_new_id)
    participant_id = Column(String, nullable=False)
    pairing_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    idempotency_key = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_now_utc)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_notification_outbox_idempotency_key"),
        Index("idx_notification_outbox_status", "status"),
    )
