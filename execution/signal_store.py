"""
In-memory signal store.

Same contract as ``SQLiteSignalStore`` without durability: used by tests,
dry runs and ``replay --memory``.
"""

import asyncio
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from config.constants import DEFAULT_LIST_LIMIT
from execution.errors import PersistenceError
from execution.signals import PersistedSignal, SignalRecord

logger = logging.getLogger(__name__)


class InMemorySignalStore:
    """Lock-protected, append-only list of persisted signals."""

    def __init__(
        self,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._signals: list[PersistedSignal] = []
        self._by_id: dict[str, PersistedSignal] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)

    def save_signal(self, record: SignalRecord) -> PersistedSignal:
        persisted = PersistedSignal(signal_id=self._id_factory(), created_at=self._clock(), record=record)
        with self._lock:
            if persisted.signal_id in self._by_id:
                raise PersistenceError(f"Signal {persisted.signal_id} already exists", record=record)
            self._signals.append(persisted)
            self._by_id[persisted.signal_id] = persisted
        logger.debug(f"Stored signal {persisted.signal_id} ({record.status.value})")
        return persisted

    async def save_signal_async(self, record: SignalRecord) -> PersistedSignal:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.save_signal(record))

    def get_signal(self, signal_id: str) -> Optional[PersistedSignal]:
        with self._lock:
            return self._by_id.get(signal_id)

    def list_signals(
        self,
        status: Optional[str] = None,
        symbol: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[PersistedSignal]:
        """Newest first; ties keep reverse insertion order."""
        matches = self._matching(status, symbol)
        ordered = sorted(
            enumerate(matches), key=lambda item: (item[1].created_at, item[0]), reverse=True
        )
        return [signal for _, signal in ordered][offset:offset + limit]

    def count_signals(self, status: Optional[str] = None, symbol: Optional[str] = None) -> int:
        return len(self._matching(status, symbol))

    def _matching(self, status: Optional[str], symbol: Optional[str]) -> list[PersistedSignal]:
        with self._lock:
            signals = list(self._signals)
        if status:
            signals = [s for s in signals if s.record.status.value == status.upper()]
        if symbol:
            wanted = symbol.strip().upper()
            signals = [s for s in signals if s.record.symbol == wanted]
        return signals
