"""
Observability metrics for the signal pipeline.

Tracks:
- Evaluations by recommendation (EXECUTE / WAIT / REJECT)
- Gatekeeper vetoes and ATM-IV fallbacks
- Stage score distribution, labelled by stage
- Evaluation latency
- Persistence failures

Each ``SignalMetrics`` owns its own ``CollectorRegistry`` so several
orchestrators (and tests) never collide on metric names.

Usage:
    >>> metrics = SignalMetrics()
    >>> metrics.record_evaluation("EXECUTE")
    >>> metrics.export()
    >>> metrics.render()  # Prometheus text exposition
"""

import logging
import math
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest, start_http_server

logger = logging.getLogger(__name__)

LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
SCORE_BUCKETS = (10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0, 80.0, 90.0, 100.0)


class RunningStats:
    """Count, sum, min and max of a stream; constant memory however long the run."""

    __slots__ = ("count", "total", "low", "high")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.low = math.inf
        self.high = -math.inf

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = min(self.low, value)
        self.high = max(self.high, value)

    def to_dict(self) -> dict[str, float]:
        if not self.count:
            return {"count": 0, "mean": 0.0, "min": 0.0, "max": 0.0}
        return {
            "count": self.count,
            "mean": self.total / self.count,
            "min": self.low,
            "max": self.high,
        }


class SignalMetrics:
    """
    Pipeline metrics collector.

    Internal tallies are always kept so ``export()`` works with Prometheus
    disabled; Prometheus collectors mirror them when enabled.
    """

    def __init__(self, enable_prometheus: bool = True, registry: Optional[CollectorRegistry] = None):
        self.use_prometheus = enable_prometheus
        self.registry = registry or CollectorRegistry()

        self._lock = threading.Lock()
        self._evaluations: dict[str, int] = defaultdict(int)
        self._gate_vetoes = 0
        self._atm_iv_fallbacks = 0
        self._persistence_failures = 0
        self._stage_scores: dict[str, RunningStats] = defaultdict(RunningStats)
        self._latency = RunningStats()

        if self.use_prometheus:
            self._init_prometheus_metrics()

        logger.debug(
            f"SignalMetrics initialized (prometheus={'enabled' if self.use_prometheus else 'disabled'})"
        )

    def _init_prometheus_metrics(self) -> None:
        self.prom_evaluations = Counter(
            "optisignal_evaluations_total",
            "Signal evaluations by recommendation",
            ["recommendation"],
            registry=self.registry,
        )
        self.prom_gate_vetoes = Counter(
            "optisignal_gate_vetoes_total",
            "Evaluations rejected by the writer-ratio gate",
            registry=self.registry,
        )
        self.prom_atm_iv_fallbacks = Counter(
            "optisignal_atm_iv_fallbacks_total",
            "Evaluations that used the default ATM implied volatility",
            registry=self.registry,
        )
        self.prom_persistence_failures = Counter(
            "optisignal_persistence_failures_total",
            "Signal records the store failed to save",
            registry=self.registry,
        )
        self.prom_stage_score = Histogram(
            "optisignal_stage_score",
            "Stage score distribution",
            ["stage"],
            buckets=SCORE_BUCKETS,
            registry=self.registry,
        )
        self.prom_latency = Histogram(
            "optisignal_evaluation_latency_seconds",
            "End-to-end evaluation latency",
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )

    def record_evaluation(self, recommendation: str) -> None:
        with self._lock:
            self._evaluations[recommendation] += 1
        if self.use_prometheus:
            self.prom_evaluations.labels(recommendation=recommendation).inc()

    def record_gate_veto(self) -> None:
        with self._lock:
            self._gate_vetoes += 1
        if self.use_prometheus:
            self.prom_gate_vetoes.inc()

    def record_atm_iv_fallback(self) -> None:
        with self._lock:
            self._atm_iv_fallbacks += 1
        if self.use_prometheus:
            self.prom_atm_iv_fallbacks.inc()

    def record_persistence_failure(self) -> None:
        with self._lock:
            self._persistence_failures += 1
        if self.use_prometheus:
            self.prom_persistence_failures.inc()

    def record_stage_score(self, stage: str, score: float) -> None:
        with self._lock:
            self._stage_scores[stage].observe(score)
        if self.use_prometheus:
            self.prom_stage_score.labels(stage=stage).observe(score)

    def record_latency(self, seconds: float) -> None:
        with self._lock:
            self._latency.observe(seconds)
        if self.use_prometheus:
            self.prom_latency.observe(seconds)

    def export(self) -> dict[str, Any]:
        """
        Export a snapshot of the internal tallies.

        Returns:
            Dict with counters, per-stage score stats and latency stats
        """
        with self._lock:
            return {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "counters": {
                    "evaluations": dict(self._evaluations),
                    "gate_vetoes": self._gate_vetoes,
                    "atm_iv_fallbacks": self._atm_iv_fallbacks,
                    "persistence_failures": self._persistence_failures,
                },
                "stage_scores": {stage: stats.to_dict() for stage, stats in self._stage_scores.items()},
                "latency": self._latency.to_dict(),
            }

    def render(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        if not self.use_prometheus:
            return b""
        return generate_latest(self.registry)

    def reset(self) -> None:
        """Reset internal tallies (for testing). Prometheus counters are monotonic."""
        with self._lock:
            self._evaluations.clear()
            self._gate_vetoes = 0
            self._atm_iv_fallbacks = 0
            self._persistence_failures = 0
            self._stage_scores.clear()
            self._latency = RunningStats()


def start_prometheus_server(metrics: SignalMetrics, port: int = 8000) -> None:
    """Expose the collector's registry on ``/metrics``."""
    start_http_server(port, registry=metrics.registry)
    logger.info(f"Prometheus metrics server started on port {port}")


class LatencyTimer:
    """
    Context manager for timing operations.

    Usage:
        >>> with LatencyTimer(metrics.record_latency):
        ...     outcome = orchestrator.generate_signal(request)
    """

    def __init__(self, callback: Callable[[float], None]):
        self.callback = callback
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self.start_time
        self.callback(elapsed)
        return False
