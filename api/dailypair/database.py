from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

Base = declarative_base()


def make_session_factory(url: str, **engine_kwargs) -> sessionmaker:
    if url.startswith("sqlite"):
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 15})
    engine = create_engine(url, future=True, **engine_kwargs)
    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.close()

    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


SessionLocal = make_session_factory(DATABASE_URL)


def create_schema(session_factory: sessionmaker) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=session_factory.kw["bind"])
