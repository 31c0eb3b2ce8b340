from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Generator
from typing import TypeVar

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, create_engine

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://asset_buddy:asset_buddy@db:5432/asset_buddy",
)
DB_TX_MAX_ATTEMPTS = int(os.getenv("DB_TX_MAX_ATTEMPTS", "3"))
DB_TX_RETRY_BACKOFF_S = float(os.getenv("DB_TX_RETRY_BACKOFF_S", "0.05"))

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available.
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
TRANSIENT_MESSAGE_MARKERS = ("deadlock", "database is locked", "lock wait timeout")


def enable_sqlite_write_locks(target: Engine) -> None:
    # SQLite ignores FOR UPDATE; BEGIN IMMEDIATE takes the write lock up front instead.
    @event.listens_for(target, "connect")
    def _disable_driver_begin(dbapi_connection: object, _connection_record: object) -> None:
        dbapi_connection.isolation_level = None  # type: ignore[attr-defined]

    @event.listens_for(target, "begin")
    def _begin_immediate(conn: object) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")  # type: ignore[attr-defined]


engine = create_engine(DATABASE_URL, pool_pre_ping=True)
if engine.dialect.name == "sqlite":
    enable_sqlite_write_locks(engine)

T = TypeVar("T")


def get_engine() -> Engine:
    return engine


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine(), expire_on_commit=False) as session:
        yield session


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def is_transient_error(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def run_with_retry(
    session: Session,
    operation: Callable[[], T],
    *,
    max_attempts: int | None = None,
) -> T:
    attempts = max_attempts if max_attempts is not None else DB_TX_MAX_ATTEMPTS
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except DBAPIError as exc:
            session.rollback()
            if attempt >= attempts or not is_transient_error(exc):
                raise
            logger.warning(
                "transient database error on attempt %s/%s, retrying: %s",
                attempt,
                attempts,
                exc.orig,
            )
            time.sleep(DB_TX_RETRY_BACKOFF_S * attempt)
        except Exception:
            session.rollback()
            raise
