from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or get_settings().database_url
    is_sqlite = url.startswith("sqlite")
    connect_args: dict[str, object] = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(url, connect_args=connect_args)
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # Readers see the last committed snapshot while a write is in flight.
    cursor = dbapi_conn.cursor()
    if not _is_memory_db(dbapi_conn):
        cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _is_memory_db(dbapi_conn) -> bool:
    cursor = dbapi_conn.cursor()
    try:
        rows = cursor.execute("PRAGMA database_list;").fetchall()
    finally:
        cursor.close()
    return all(not row[2] for row in rows)


def session_factory(eng: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine()
SessionLocal = session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[sessionmaker[Session]] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
