from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import local
from typing import Iterator, Optional

from .errors import (
    DuplicateEntry,
    NotFound,
    OperationCancelled,
    QueryTimeout,
    StoreError,
    TransientStoreFailure,
)


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
DEFAULT_QUERY_TIMEOUT = 3.0
PROGRESS_HANDLER_STEPS = 1000

# SQLite (extended) result codes, see https://www.sqlite.org/rescode.html
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_INTERRUPT = 9
SQLITE_CONSTRAINT_FOREIGNKEY = 787
SQLITE_CONSTRAINT_PRIMARYKEY = 1555
SQLITE_CONSTRAINT_UNIQUE = 2067


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


def casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


class Deadline:
    """Point in (monotonic) time after which store work must stop.

    A deadline can also be cancelled from another thread. Child deadlines made
    with :meth:`bounded` share the cancellation flag of their parent.
    """

    def __init__(self, expires_at: Optional[float] = None, *, cancelled: Optional[threading.Event] = None):
        self.expires_at = expires_at
        self._cancelled = cancelled if cancelled is not None else threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def bounded(self, seconds: float) -> "Deadline":
        candidate = time.monotonic() + seconds
        if self.expires_at is not None:
            candidate = min(candidate, self.expires_at)
        return Deadline(candidate, cancelled=self._cancelled)

    def should_abort(self) -> int:
        return int(self.cancelled or self.expired())


class SQLiteConnectionManager:
    def __init__(self, db_path: Path, *, busy_timeout: float = DEFAULT_QUERY_TIMEOUT):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._local = local()

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA temp_store=MEMORY")
            conn.create_function("casefold", 1, casefold, deterministic=True)
            self._local.connection = conn
        return conn

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class Database:
    """Owns the connections and runs every bounded round trip to SQLite."""

    def __init__(self, db_path: Path, *, query_timeout: float = DEFAULT_QUERY_TIMEOUT):
        self.db_path = Path(db_path)
        self.query_timeout = query_timeout
        self._connection_manager = SQLiteConnectionManager(self.db_path, busy_timeout=query_timeout)
        self._setup_lock = threading.RLock()
        self._setup_complete = False
        self.setup()

    def setup(self) -> None:
        if self._setup_complete:
            return
        with self._setup_lock:
            if self._setup_complete:
                return
            self._ensure_schema(self._connection_manager.get_connection())
            self._setup_complete = True

    def close(self) -> None:
        self._connection_manager.close_connection()

    @contextmanager
    def round_trip(self, deadline: Optional[Deadline] = None) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction bounded by ``query_timeout``.

        The caller's deadline (if any) tightens the bound and its cancellation
        aborts the statement in flight. Storage errors leave this block already
        translated into the store error taxonomy.
        """
        trip = (deadline or Deadline()).bounded(self.query_timeout)
        if trip.cancelled:
            raise OperationCancelled("operation cancelled before reaching the database")
        if trip.expired():
            raise QueryTimeout("deadline exceeded before reaching the database")
        conn = self._connection_manager.get_connection()
        remaining_ms = int((trip.remaining() or 0.0) * 1000)
        conn.set_progress_handler(trip.should_abort, PROGRESS_HANDLER_STEPS)
        try:
            conn.execute(f"PRAGMA busy_timeout = {max(remaining_ms, 1)}")
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise self._classify(exc, trip) from exc
        finally:
            conn.set_progress_handler(None, 0)

    @staticmethod
    def _classify(exc: sqlite3.Error, trip: Deadline) -> StoreError:
        code = getattr(exc, "sqlite_errorcode", None)
        if code in (SQLITE_CONSTRAINT_UNIQUE, SQLITE_CONSTRAINT_PRIMARYKEY):
            return DuplicateEntry()
        if code == SQLITE_CONSTRAINT_FOREIGNKEY:
            return NotFound("referenced record not found")
        if code is not None and code & 0xFF == SQLITE_INTERRUPT:
            if trip.cancelled:
                logger.info("Query cancelled by caller")
                return OperationCancelled("operation cancelled")
            logger.warning("Query interrupted after exceeding its deadline")
            return QueryTimeout("query exceeded its deadline")
        if code is not None and code & 0xFF in (SQLITE_BUSY, SQLITE_LOCKED):
            logger.warning("Timed out waiting for a database lock: %s", exc)
            return QueryTimeout("timed out waiting for a database lock")
        logger.warning("Unclassified storage error (%s): %s", getattr(exc, "sqlite_errorname", "unknown"), exc)
        return TransientStoreFailure(str(exc))

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        with conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tokens (
                    hash TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    expiry TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_tokens_user ON tokens(user_id);

                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_posts_user ON posts(user_id);

                CREATE TABLE IF NOT EXISTS comments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id);
                CREATE INDEX IF NOT EXISTS idx_comments_user ON comments(user_id);

                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS post_tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    UNIQUE (post_id, tag_id),
                    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE,
                    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_post_tags_tag ON post_tags(tag_id);
                """
            )
