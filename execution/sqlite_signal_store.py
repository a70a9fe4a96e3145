"""
SQLite-backed Signal Store.

Write-once storage for evaluated signals. Every evaluation is a new row;
rows are never updated, so the table is a full audit history of approved,
waiting and rejected decisions.

- WAL mode so readers never block the writer
- Insert-only: a duplicate signal id is a ``PersistenceError``, never an overwrite
- Summary columns are indexed for listing; the full record is kept as JSON

Usage:
    >>> store = SQLiteSignalStore(Path("data_cache/signals.db"))
    >>> persisted = store.save_signal(record)
    >>> store.list_signals(status="APPROVED", limit=10)
"""

import asyncio
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from config.constants import DEFAULT_LIST_LIMIT, STAGE_ORDER
from execution.errors import PersistenceError
from execution.signals import SIGNAL_SCHEMA_VERSION, PersistedSignal, SignalRecord
from execution.sqlite_mixin import SQLiteTransactionMixin

logger = logging.getLogger(__name__)

# SQLite database schema version
SQLITE_SCHEMA_VERSION = 1


def _new_signal_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteSignalStore(SQLiteTransactionMixin):
    """
    SQLite signal repository.

    Identity and creation time are assigned here, not by the orchestrator:
    ``id_factory`` defaults to uuid4 and ``clock`` to UTC now.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS trading_signals (
        signal_id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        evaluated_at TEXT NOT NULL,
        organization_id TEXT,
        user_id TEXT,
        symbol TEXT NOT NULL,
        strike REAL NOT NULL,
        expiry TEXT NOT NULL,
        option_type TEXT NOT NULL,
        signal_type TEXT NOT NULL,
        status TEXT NOT NULL,
        status_reason TEXT NOT NULL,
        overall_score REAL NOT NULL,
        signal_strength REAL NOT NULL,
        regime_score REAL NOT NULL,
        price_action_score REAL NOT NULL,
        multi_timeframe_score REAL NOT NULL,
        volatility_score REAL NOT NULL,
        writer_ratio_score REAL NOT NULL,
        risk_regime_score REAL NOT NULL,
        portfolio_score REAL NOT NULL,
        writer_ratio REAL NOT NULL,
        writer_ratio_passed INTEGER NOT NULL,
        call_writers REAL NOT NULL,
        put_writers REAL NOT NULL,
        vix_level REAL,
        market_regime TEXT,
        timeframe TEXT NOT NULL,
        entry_price REAL,
        target_price REAL,
        stop_loss REAL,
        quantity INTEGER,
        analysis TEXT NOT NULL,
        schema_version TEXT NOT NULL
    )
    """

    CREATE_INDEXES_SQL = [
        "CREATE INDEX IF NOT EXISTS idx_signals_created_at ON trading_signals(created_at)",
        "CREATE INDEX IF NOT EXISTS idx_signals_status ON trading_signals(status)",
        "CREATE INDEX IF NOT EXISTS idx_signals_symbol ON trading_signals(symbol)",
    ]

    SCHEMA_VERSION_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS schema_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """

    INSERT_SQL = f"""
    INSERT INTO trading_signals (
        signal_id, created_at, evaluated_at, organization_id, user_id,
        symbol, strike, expiry, option_type, signal_type,
        status, status_reason, overall_score, signal_strength,
        {", ".join(f"{stage.value}_score" for stage in STAGE_ORDER)},
        writer_ratio, writer_ratio_passed, call_writers, put_writers,
        vix_level, market_regime, timeframe,
        entry_price, target_price, stop_loss, quantity,
        analysis, schema_version
    ) VALUES ({", ".join("?" * 34)})
    """

    def __init__(
        self,
        db_path: str | Path,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        busy_timeout: float = 30.0,
    ):
        """
        Initialize SQLite signal store.

        Args:
            db_path: Path to SQLite database file
            id_factory: Produces a fresh signal id per insert
            clock: Produces ``created_at`` timestamps
            busy_timeout: Seconds to wait on a locked database
        """
        super().__init__(db_path, busy_timeout=busy_timeout)
        self._id_factory = id_factory or _new_signal_id
        self._clock = clock or _utc_now

        try:
            self._init_schema()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialize signal store at {self._db_path}: {e}") from e

        logger.info(
            f"SQLiteSignalStore initialized: {self._db_path} "
            f"(record v{SIGNAL_SCHEMA_VERSION}, db v{SQLITE_SCHEMA_VERSION})"
        )

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(self.CREATE_TABLE_SQL)
            for idx_sql in self.CREATE_INDEXES_SQL:
                conn.execute(idx_sql)
            conn.execute(self.SCHEMA_VERSION_TABLE_SQL)

            conn.execute(
                "INSERT OR REPLACE INTO schema_meta (key, value) VALUES (?, ?)",
                ("sqlite_schema_version", str(SQLITE_SCHEMA_VERSION)),
            )
            conn.execute(
                "INSERT OR REPLACE INTO schema_meta (key, value) VALUES (?, ?)",
                ("record_schema_version", SIGNAL_SCHEMA_VERSION),
            )

    def schema_versions(self) -> dict[str, str]:
        conn = self._get_connection()
        rows = conn.execute("SELECT key, value FROM schema_meta").fetchall()
        return {row["key"]: row["value"] for row in rows}

    def save_signal(self, record: SignalRecord) -> PersistedSignal:
        """
        Insert a new signal.

        Raises:
            PersistenceError: Duplicate id or any SQLite failure. The
                computed record travels with the exception.
        """
        persisted = PersistedSignal(signal_id=self._id_factory(), created_at=self._clock(), record=record)
        try:
            with self._transaction() as conn:
                conn.execute(self.INSERT_SQL, self._to_row(persisted))
        except sqlite3.IntegrityError as e:
            raise PersistenceError(f"Signal {persisted.signal_id} already exists: {e}", record=record) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save signal for {record.symbol}: {e}", record=record) from e

        logger.debug(f"Stored signal {persisted.signal_id} ({record.status.value})")
        return persisted

    async def save_signal_async(self, record: SignalRecord) -> PersistedSignal:
        """Async save."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.save_signal(record))

    def get_signal(self, signal_id: str) -> Optional[PersistedSignal]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT signal_id, created_at, analysis FROM trading_signals WHERE signal_id = ?",
            (signal_id,),
        ).fetchone()
        if row:
            return self._row_to_signal(row)
        return None

    def list_signals(
        self,
        status: Optional[str] = None,
        symbol: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[PersistedSignal]:
        """
        Query stored signals, newest first.

        Args:
            status: Only signals with this status (APPROVED, WAIT, REJECTED)
            symbol: Only signals for this symbol
            limit: Maximum rows returned
            offset: Rows skipped before the first returned

        Returns:
            Matching signals ordered by creation time, newest first
        """
        where_clause, params = self._filters(status, symbol)
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT signal_id, created_at, analysis FROM trading_signals WHERE {where_clause} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return [self._row_to_signal(row) for row in cursor]

    async def list_signals_async(self, **kwargs) -> list[PersistedSignal]:
        """Async query."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.list_signals(**kwargs))

    def count_signals(self, status: Optional[str] = None, symbol: Optional[str] = None) -> int:
        where_clause, params = self._filters(status, symbol)
        conn = self._get_connection()
        return conn.execute(f"SELECT COUNT(*) FROM trading_signals WHERE {where_clause}", params).fetchone()[0]

    def get_statistics(self) -> dict[str, Any]:
        """Summary counts by status."""
        conn = self._get_connection()
        rows = conn.execute("SELECT status, COUNT(*) AS n FROM trading_signals GROUP BY status").fetchall()
        by_status = {row["status"]: row["n"] for row in rows}
        return {
            "total_records": sum(by_status.values()),
            "by_status": by_status,
            "schema_version": SIGNAL_SCHEMA_VERSION,
            "storage_backend": "sqlite",
        }

    @staticmethod
    def _filters(status: Optional[str], symbol: Optional[str]) -> tuple[str, list[Any]]:
        conditions = []
        params: list[Any] = []
        if status:
            conditions.append("status = ?")
            params.append(status.upper())
        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol.strip().upper())
        return (" AND ".join(conditions) if conditions else "1=1"), params

    @staticmethod
    def _to_row(persisted: PersistedSignal) -> tuple[Any, ...]:
        record = persisted.record
        writer = record.writer_ratio
        execution = record.execution
        return (
            persisted.signal_id,
            persisted.created_at.isoformat(),
            record.evaluated_at.isoformat(),
            record.organization_id,
            record.user_id,
            record.symbol,
            record.strike,
            record.expiry.isoformat(),
            record.option_type.value,
            record.signal_type.value,
            record.status.value,
            record.status_reason,
            record.overall_score,
            record.signal_strength,
            *(record.result(stage).score for stage in STAGE_ORDER),
            writer.writer_ratio,
            1 if writer.gate_passed else 0,
            writer.call_writers,
            writer.put_writers,
            record.vix_level,
            record.market_regime,
            record.timeframe,
            execution.entry_price if execution else None,
            execution.target if execution else None,
            execution.stop_loss if execution else None,
            execution.quantity if execution else None,
            json.dumps(record.to_dict(), default=str),
            record.schema_version,
        )

    @staticmethod
    def _row_to_signal(row: sqlite3.Row) -> PersistedSignal:
        return PersistedSignal(
            signal_id=row["signal_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            record=SignalRecord.from_dict(json.loads(row["analysis"])),
        )
