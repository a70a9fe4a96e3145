"""
Core interfaces for the signal pipeline.
"""
from datetime import datetime
from typing import Any, Optional, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from execution.signals import PersistedSignal, SignalRecord
    from scoring.types import StageResult


@runtime_checkable
class StageScorer(Protocol):
    """One pipeline stage. Must be pure and deterministic for a given input."""

    def evaluate(self, stage_input: Any) -> "StageResult":
        ...


@runtime_checkable
class SignalRepository(Protocol):
    """Write-once signal store."""

    def save_signal(self, record: "SignalRecord") -> "PersistedSignal":
        """Insert a new signal. Never overwrites; raises PersistenceError on failure."""
        ...

    def get_signal(self, signal_id: str) -> Optional["PersistedSignal"]:
        ...

    def list_signals(
        self,
        status: Optional[str] = None,
        symbol: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list["PersistedSignal"]:
        """Newest first."""
        ...

    def count_signals(self, status: Optional[str] = None, symbol: Optional[str] = None) -> int:
        ...


class Clock(Protocol):
    def __call__(self) -> datetime:
        ...
