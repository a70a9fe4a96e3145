"""
Unit tests for the SQLite signal store.

Tests include:
- Schema and metadata
- Durability across reopen
- Denormalized query columns
- Concurrent writers
"""

import json
import sqlite3
import tempfile
import threading
from pathlib import Path

import pytest

from config.constants import STAGE_ORDER
from execution.errors import PersistenceError
from execution.signals import SIGNAL_SCHEMA_VERSION
from execution.sqlite_signal_store import SQLITE_SCHEMA_VERSION, SQLiteSignalStore
from tests.factories import gate_failed_results, make_record, rejected_record


class TestSQLiteSignalStore:
    @pytest.fixture
    def temp_db(self):
        """Create temporary database path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "nested" / "signals.db"

    def test_init_creates_database(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        assert temp_db.exists()
        store.close()

    def test_schema_versions(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        assert store.schema_versions() == {
            "sqlite_schema_version": str(SQLITE_SCHEMA_VERSION),
            "record_schema_version": SIGNAL_SCHEMA_VERSION,
        }
        store.close()

    def test_survives_reopen(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        saved = store.save_signal(make_record())
        store.close()

        reopened = SQLiteSignalStore(temp_db)
        assert reopened.get_signal(saved.signal_id) == saved
        assert reopened.count_signals() == 1
        reopened.close()

    def test_query_columns(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        saved = store.save_signal(make_record())
        store.close()

        conn = sqlite3.connect(temp_db)
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM trading_signals WHERE signal_id = ?", (saved.signal_id,)).fetchone()
        conn.close()

        assert row["status"] == "APPROVED"
        assert row["symbol"] == "NIFTY"
        assert row["writer_ratio_passed"] == 1
        assert row["writer_ratio"] == 3.0
        for stage in STAGE_ORDER:
            assert row[f"{stage.value}_score"] == 80.0
        assert row["entry_price"] == 22000.0
        assert row["quantity"] == 10
        assert json.loads(row["analysis"])["status_reason"] == "All stages passed. Overall score: 80/100"

    def test_gate_rejection_columns(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        saved = store.save_signal(
            rejected_record(
                status_reason="WRITER_RATIO_FAILED",
                overall_score=0.0,
                stage_results=gate_failed_results(),
            )
        )
        loaded = store.get_signal(saved.signal_id)
        store.close()

        assert loaded.record.gate_rejected
        assert loaded.record.risk_regime.skipped
        assert loaded.record.execution is None

    def test_statistics(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        store.save_signal(make_record())
        store.save_signal(rejected_record())
        store.save_signal(rejected_record())

        stats = store.get_statistics()
        assert stats["total_records"] == 3
        assert stats["by_status"] == {"APPROVED": 1, "REJECTED": 2}
        assert stats["storage_backend"] == "sqlite"
        store.close()

    def test_unwritable_location(self, temp_db):
        temp_db.parent.mkdir(parents=True)
        temp_db.mkdir()  # a directory where the database file should be
        with pytest.raises(PersistenceError, match="Cannot initialize"):
            SQLiteSignalStore(temp_db)

    @pytest.mark.asyncio
    async def test_async_list(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        await store.save_signal_async(make_record())
        signals = await store.list_signals_async(status="APPROVED")
        assert len(signals) == 1
        store.close()


class TestConcurrentAccess:
    @pytest.fixture
    def temp_db(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "concurrent.db"

    def test_concurrent_saves(self, temp_db):
        """Every save from every thread lands exactly once."""
        store = SQLiteSignalStore(temp_db)
        errors = []
        saved_ids = []
        lock = threading.Lock()

        def writer():
            try:
                for _ in range(10):
                    persisted = store.save_signal(make_record())
                    with lock:
                        saved_ids.append(persisted.signal_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(set(saved_ids)) == 50
        assert store.count_signals() == 50
        store.close()

    def test_close_releases_every_thread(self, temp_db):
        store = SQLiteSignalStore(temp_db)
        worker = threading.Thread(target=lambda: store.save_signal(make_record()))
        worker.start()
        worker.join()
        assert len(store._connections) == 2

        store.close()
        assert store._connections == []
        # Reads after close open a fresh connection
        assert store.count_signals() == 1
        store.close()
