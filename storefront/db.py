# storefront/db.py
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import settings
from .errors import (
    ConflictError,
    PersistenceError,
    QueryTimeoutError,
    ReferentialError,
    StorefrontError,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()

# Postgres SQLSTATEs
_PG_QUERY_CANCELED = "57014"
_PG_FOREIGN_KEY_VIOLATION = "23503"
_PG_UNIQUE_VIOLATION = "23505"


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    # SQLite ignores REFERENCES clauses unless asked per connection.
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    conn.info.setdefault("query_start", []).append(time.perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    started = conn.info["query_start"].pop()
    # parameters are never logged: they carry password hashes and TOTP secrets
    logger.debug(
        "db.query",
        statement=" ".join(statement.split()),
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )


def create_db_engine(url: Optional[str] = None) -> Engine:
    url = url or settings.database_url
    timeout_ms = settings.db_query_timeout_ms

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout_ms / 1000},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(
            url,
            pool_size=settings.db_pool_size,
            max_overflow=0,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,
            connect_args={"options": f"-c statement_timeout={timeout_ms}"},
        )

    event.listen(engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(engine, "after_cursor_execute", _after_cursor_execute)
    return engine


engine = create_db_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _sqlstate(exc: SQLAlchemyError) -> str:
    return str(getattr(getattr(exc, "orig", None), "pgcode", "") or "")


def is_unique_violation(exc: IntegrityError, column: Optional[str] = None) -> bool:
    """True when ``exc`` is a unique-key clash, optionally on ``column``.

    SQLite reports ``UNIQUE constraint failed: orders.payment_intent_id``;
    Postgres names the constraint (``orders_payment_intent_id_key``). Both
    contain the column name.
    """
    msg = str(exc.orig)
    unique = _sqlstate(exc) == _PG_UNIQUE_VIOLATION or "UNIQUE constraint failed" in msg
    if not unique:
        return False
    return column is None or column in msg


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    return _sqlstate(exc) == _PG_FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in str(exc.orig)


def translate_db_error(exc: SQLAlchemyError) -> StorefrontError:
    """Map a SQLAlchemy failure onto the storefront error taxonomy."""
    if isinstance(exc, PoolTimeoutError):
        return QueryTimeoutError()

    if isinstance(exc, OperationalError):
        if _sqlstate(exc) == _PG_QUERY_CANCELED or "statement timeout" in str(exc.orig):
            return QueryTimeoutError()
        return PersistenceError()

    if isinstance(exc, IntegrityError):
        if is_foreign_key_violation(exc):
            return ReferentialError("Referenced record does not exist.")
        if is_unique_violation(exc):
            return ConflictError("Record already exists.")

    return PersistenceError()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit on success; roll back on every failure path.

    Storefront errors raised inside the block propagate unchanged. Raw
    SQLAlchemy errors are translated.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        err = translate_db_error(exc)
        logger.warning("db.transaction_rolled_back", category=err.category, error=type(exc).__name__)
        raise err from exc
    except Exception:
        db.rollback()
        raise
