import logging
import time

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .database import SessionLocal, create_schema
from .errors import (
    AlreadyTerminal,
    ConcurrentModification,
    EngineError,
    InvalidInput,
    NoReplacementAvailable,
    NotAParticipant,
    PairingNotFound,
    ParticipantNotFound,
    PartialBatchFailure,
)
from .routes import include_modular_routers

logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Pair API")
include_modular_routers(app)

ERROR_STATUS = {
    PairingNotFound: 404,
    ParticipantNotFound: 404,
    NotAParticipant: 403,
    AlreadyTerminal: 409,
    NoReplacementAvailable: 409,
    InvalidInput: 422,
    ConcurrentModification: 503,
    PartialBatchFailure: 503,
}


def status_for(exc: EngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("[HTTP] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"detail": jsonable_encoder(exc.to_dict())})


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


def init_schema() -> None:
    create_schema(SessionLocal)


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    init_schema()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
