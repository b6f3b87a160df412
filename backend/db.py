"""Database engine and session factory for the unit/alert store (SQLite by default)."""
from collections.abc import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.config import DATABASE_URL, TESTING


def _check_test_url(url: str) -> None:
    """Refuse to start under TESTING=true unless the URL is clearly a test database."""
    path = url.lower().split("?")[0]
    if "fleet.db" in path or (":memory:" not in path and "test" not in path):
        raise RuntimeError(
            "Tests must not run against the fleet database. Set TESTING_DATABASE_URL to "
            "sqlite:///:memory: (or another test URL containing :memory: or 'test')."
        )


def _build_engine(url: str) -> Engine:
    is_sqlite = url.startswith("sqlite")
    kwargs: dict = {"echo": False}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory SQLite: one shared connection so every session sees the same tables.
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if is_sqlite:
        # Alert and history rows cascade with their unit.
        @event.listens_for(engine, "connect")
        def _sqlite_fk(dbapi_conn, connection_record):
            dbapi_conn.execute("PRAGMA foreign_keys=ON")
    return engine


if TESTING:
    _check_test_url(DATABASE_URL)

_engine = _build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: yield a DB session and close after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
