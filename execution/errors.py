"""
Exception types for the signal pipeline.

Gate and soft rejections are normal outcomes and never raise. These
exceptions cover the three fault classes a caller must tell apart:
bad input, a scorer that raised, and a decision that could not be stored.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from config.constants import StageName
    from execution.signals import SignalRecord


class SignalPipelineError(Exception):
    """Base class for pipeline faults."""
    pass


class EvaluationInputError(SignalPipelineError):
    """Raised before any stage runs when the request cannot be evaluated."""
    pass


class StageEvaluationError(SignalPipelineError):
    """
    A scorer raised instead of returning a degraded result.

    Fatal for the evaluation: nothing is persisted.
    """

    def __init__(self, stage: "StageName", cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage {stage.number} ({stage.value}) failed: {type(cause).__name__}: {cause}")


class PersistenceError(SignalPipelineError):
    """
    The decision was computed but could not be durably recorded.

    ``record`` carries the computed signal so the caller can retry the write
    or surface the decision anyway.
    """

    def __init__(self, message: str, record: Optional["SignalRecord"] = None):
        self.record = record
        super().__init__(message)
