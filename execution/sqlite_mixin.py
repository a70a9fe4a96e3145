"""
Shared SQLite plumbing for the signal stores.

One connection per thread, WAL journaling, and a single writer at a time.
``close()`` closes the connections of every thread that touched the store.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from config.logging_config import LogCategory

logger = logging.getLogger(__name__)

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)


class SQLiteTransactionMixin:
    """
    Per-thread connections plus a serialised write path.

    Attributes:
        _db_path: Database file; its parent directory is created on init
        _write_lock: Held for the duration of each write transaction
        _busy_timeout: Seconds a connection waits on a locked database
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = 30.0):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = busy_timeout
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn

        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=self._busy_timeout)
        for pragma in PRAGMAS:
            conn.execute(pragma)
        conn.row_factory = sqlite3.Row
        self._local.conn = conn
        with self._connections_lock:
            self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Commit everything executed inside the block, or roll it all back.

            with self._transaction() as conn:
                conn.execute(INSERT_SQL, row)
        """
        conn = self._get_connection()
        with self._write_lock:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()
        logger.debug(f"{LogCategory.PERSIST} Closed {len(connections)} connection(s) to {self._db_path}")
