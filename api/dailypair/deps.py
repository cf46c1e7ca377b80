from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from .config import ADMIN_TOKEN, DEFAULT_SETTINGS
from .database import SessionLocal
from .services.engine import PairingEngine


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def parse_participant_id(raw_participant_id: str | None) -> str:
    if not raw_participant_id:
        raise HTTPException(status_code=401, detail="X-Participant-Id header is required")
    value = raw_participant_id.strip()
    if not value:
        raise HTTPException(status_code=401, detail="X-Participant-Id header is required")
    return value


@lru_cache(maxsize=1)
def _default_engine() -> PairingEngine:
    return PairingEngine.from_session_factory(SessionLocal, DEFAULT_SETTINGS)


def get_engine() -> PairingEngine:
    return _default_engine()


def get_admin_token() -> str:
    return ADMIN_TOKEN


def current_participant_id(x_participant_id: str | None = Header(default=None)) -> str:
    return parse_participant_id(x_participant_id)


def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(get_admin_token),
) -> None:
    validate_admin_token(x_admin_token, admin_token)


def optional_participant_id(x_participant_id: str | None = Header(default=None)) -> str | None:
    if x_participant_id is None or not x_participant_id.strip():
        return None
    return x_participant_id.strip()
