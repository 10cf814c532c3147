"""Database engine and session management (PostgreSQL or local SQLite)."""

from collections.abc import Generator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _register_sqlite_functions(dbapi_connection, _connection_record) -> None:
    # SQLite's built-in lower() folds ASCII only; match Python's str.lower().
    dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


def build_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for url. SQLite connections are shared across threads so the
    ingestion worker and request handlers can use the same file; an in-memory
    SQLite URL gets a single static connection so every session sees the same data.
    """
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:") or ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_engine(url, echo=echo, **kwargs)
        event.listen(sqlite_engine, "connect", _register_sqlite_functions)
        return sqlite_engine
    return create_engine(url, pool_pre_ping=True, echo=echo)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency that yields a DB session and closes it when done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create tables that do not exist yet (local SQLite, CLI and tests)."""
    from app.models import Base

    Base.metadata.create_all(bind=bind or engine)


def check_db_connected(db: Session) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
