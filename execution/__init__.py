"""
Signal orchestration, decision rules and persistence.

Modules:
    - orchestrator: SignalOrchestrator running the seven stages end to end
    - decision_logic: Overall score, recommendation and reason rules
    - signals: SignalRecord, PersistedSignal and EvaluationOutcome
    - errors: EvaluationInputError, StageEvaluationError, PersistenceError
    - sqlite_signal_store: SQLite-backed write-once signal store (recommended)
    - signal_store: In-memory signal store for tests and dry runs
    - sqlite_mixin: Thread-local connections and atomic transactions

Example:
    >>> from config.settings import load_settings
    >>> from execution.orchestrator import SignalOrchestrator
    >>> from execution.sqlite_signal_store import SQLiteSignalStore
    >>>
    >>> settings = load_settings()
    >>> store = SQLiteSignalStore(settings.persistence.db_path)
    >>> orchestrator = SignalOrchestrator(settings, store)
    >>> outcome = orchestrator.generate_signal(request)
    >>> outcome.recommendation, outcome.rejection_reason
"""
