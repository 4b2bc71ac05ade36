from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

BASE_DIR = Path(__file__).resolve().parents[1]
HOMESTASH_ENV = os.getenv("HOMESTASH_ENV", "dev").strip().lower()
default_db = "homestash_test.db" if HOMESTASH_ENV == "test" else "homestash.db"
DEFAULT_SQLITE_URL = f"sqlite:///{(BASE_DIR / default_db).as_posix()}"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE_URL)
SQLITE_BUSY_TIMEOUT_MS = 10000
SQLITE_BEGIN_OPTION = "sqlite_begin"
WRITE_TRANSACTION_OPTIONS = {SQLITE_BEGIN_OPTION: "IMMEDIATE"}


def _install_sqlite_locking(engine: Engine) -> None:
    # WAL keeps readers and the single writer out of each other's way. Write
    # transactions opened through begin_write() start with BEGIN IMMEDIATE so
    # validation reads and the writes that follow share one locked snapshot.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_MS / 1000
    engine = create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    if engine.dialect.name == "sqlite":
        _install_sqlite_locking(engine)
    return engine


def build_sessionmaker(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, class_=Session, expire_on_commit=False, future=True)


engine = build_engine(DATABASE_URL)

SessionLocal = build_sessionmaker(engine)


def begin_write(session: Session) -> None:
    """Start the session's write transaction, closing any read transaction first."""
    if session.in_transaction():
        session.commit()
    session.connection(execution_options=WRITE_TRANSACTION_OPTIONS)


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def try_connect() -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except OperationalError as exc:
        raise RuntimeError("Could not connect to the database") from exc
