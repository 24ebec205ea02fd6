import os
from contextlib import contextmanager

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .audit_guard import GuardedConnection
from .config import settings
from .errors import DomainError, ForbiddenHardDeleteError, PersistenceError

DATABASE_URL = os.getenv("APP_DATABASE_URL") or settings.db_url


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)

# Opened lazily so importing the app (tests, scripts) does not need a database.
_pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=_POOL_MIN,
    max_size=_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)

# Conflicts the caller can resolve by re-running the whole operation.
_RETRYABLE = (pg_errors.SerializationFailure, pg_errors.DeadlockDetected, pg_errors.LockNotAvailable)


_HARD_DELETE_PREFIX = "hard delete is forbidden on "


def translate_db_error(exc: Exception) -> DomainError:
    if isinstance(exc, pg_errors.InsufficientPrivilege):
        # Raised by the forbid_hard_delete trigger when a statement got past the guard.
        msg = (getattr(exc.diag, "message_primary", None) or str(exc)).strip()
        if msg.startswith(_HARD_DELETE_PREFIX):
            return ForbiddenHardDeleteError(msg[len(_HARD_DELETE_PREFIX):].strip())
    if isinstance(exc, _RETRYABLE):
        return PersistenceError(f"transaction conflict: {exc}", retryable=True)
    err = PersistenceError(f"database error: {exc}")
    # Map common constraint errors to 4xx so clients get actionable responses.
    if isinstance(exc, pg_errors.UniqueViolation):
        err.status_code = 409
        err.error_code = "conflict"
    elif isinstance(exc, (pg_errors.ForeignKeyViolation, pg_errors.CheckViolation, pg_errors.InvalidTextRepresentation)):
        err.status_code = 400
        err.error_code = "constraint_violation"
    return err


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    # Every cursor handed out goes through the hard-delete guard.
    if pool.closed:
        pool.open()
    try:
        with pool.connection() as conn:
            with conn:
                yield GuardedConnection(conn)
    except psycopg.Error as exc:
        raise translate_db_error(exc) from exc


def get_conn():
    return _pooled_conn(_pool)


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    if not _pool.closed:
        _pool.close()
