import json
import os
from dataclasses import dataclass, fields, replace
from typing import Any

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/dailypair")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

MATCH_TIMEZONE = os.getenv("MATCH_TIMEZONE", "America/Los_Angeles")
MATCH_HOUR = int(os.getenv("MATCH_HOUR", "5"))
DEADLINE_HOUR = int(os.getenv("DEADLINE_HOUR", "22"))
REAP_DELAY_MINUTES = int(os.getenv("REAP_DELAY_MINUTES", "5"))

ACTIVITY_WINDOW_DAYS = int(os.getenv("ACTIVITY_WINDOW_DAYS", "3"))
FLAKE_STREAK_CUTOFF = int(os.getenv("FLAKE_STREAK_CUTOFF", "5"))
HISTORY_WINDOW_DAYS = int(os.getenv("HISTORY_WINDOW_DAYS", "7"))

REAPER_BATCH_LIMIT = int(os.getenv("REAPER_BATCH_LIMIT", "450"))
TXN_MAX_ATTEMPTS = int(os.getenv("TXN_MAX_ATTEMPTS", "5"))
MATCH_SEED = int(os.environ["MATCH_SEED"]) if os.getenv("MATCH_SEED") else None

MEETING_LINK_BASE = os.getenv("MEETING_LINK_BASE", "https://meet.jit.si/DailyPair-")
COMMENT_MAX_LENGTH = int(os.getenv("COMMENT_MAX_LENGTH", "500"))
NOTIFICATION_DISPATCHER = os.getenv("NOTIFICATION_DISPATCHER", "log").strip().lower()


@dataclass(frozen=True)
class EngineSettings:
    timezone: str = MATCH_TIMEZONE
    deadline_hour: int = DEADLINE_HOUR
    match_hour: int = MATCH_HOUR
    reap_delay_minutes: int = REAP_DELAY_MINUTES
    activity_window_days: int = ACTIVITY_WINDOW_DAYS
    flake_streak_cutoff: int = FLAKE_STREAK_CUTOFF
    history_window_days: int = HISTORY_WINDOW_DAYS
    reaper_batch_limit: int = REAPER_BATCH_LIMIT
    txn_max_attempts: int = TXN_MAX_ATTEMPTS
    match_seed: int | None = MATCH_SEED
    meeting_link_base: str = MEETING_LINK_BASE
    comment_max_length: int = COMMENT_MAX_LENGTH

    def with_overrides(self, overrides: dict[str, Any]) -> "EngineSettings":
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in overrides.items() if k in known})


DEFAULT_SETTINGS = EngineSettings()

if os.getenv("ENGINE_CONFIG_JSON"):
    try:
        DEFAULT_SETTINGS = DEFAULT_SETTINGS.with_overrides(json.loads(os.getenv("ENGINE_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        pass
