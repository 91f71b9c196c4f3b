from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: Optional[str] = None, **engine_kwargs) -> Engine:
    """Engine for ``database_url`` (the configured ledger store by default).

    SQLite connections are shared across the API's worker threads and the
    scheduler thread, and enforce foreign keys so ledger rows never point at
    a missing account.
    """
    url = database_url or get_settings().database_url
    is_sqlite = url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False

    eng = create_engine(url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def build_session_factory(bind: Engine) -> sessionmaker:
    # Derived views are cached past the request that built them, so loaded
    # rows must stay readable after commit.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine()
SessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine) -> None:
    # Registers every mapped table on Base.metadata before creating them.
    import models  # noqa: F401

    Base.metadata.create_all(bind)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
