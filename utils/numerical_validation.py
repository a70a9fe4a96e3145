"""
Numerical guards for stage scores and sizing figures.

Every score that reaches a StageResult or a persisted signal passes through
``ensure_finite`` or ``clamp_score`` so a NaN from a degenerate series can
never be stored or compared against a decision threshold.
"""

import math
import logging
from numbers import Real
from typing import Union, Dict, Any, Optional

logger = logging.getLogger(__name__)

Numeric = Union[float, int]


def ensure_finite(
    value: Numeric,
    name: str,
    default: Numeric = 0.0,
    log_level: int = logging.WARNING
) -> Numeric:
    """
    Validates that a numeric value is finite (not NaN or Inf).

    Args:
        value: The numeric value to check. numpy scalars are accepted.
        name: Name of the variable for logging context.
        default: fallback value to return if check fails. Defaults to 0.0.
        log_level: Logging level to use if check fails.

    Returns:
        The original value if finite, otherwise the default value.
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        logger.log(
            log_level,
            f"Non-numeric value detected for {name}: {type(value)}. Using default: {default}"
        )
        return default

    if not math.isfinite(value):
        logger.log(
            log_level,
            f"Non-finite value detected for {name}: {value}. Using default: {default}"
        )
        return default

    return value


def clamp_score(value: Numeric, name: str = "score", low: float = 0.0, high: float = 100.0) -> float:
    """Finite score clamped to [low, high]; non-finite input degrades to ``low``."""
    val = float(ensure_finite(value, name, default=low))
    return max(low, min(high, val))


def safe_ratio(numerator: Numeric, denominator: Numeric, default: float = 0.0) -> float:
    """numerator / denominator, or ``default`` when the result is undefined."""
    if denominator == 0:
        return default
    return float(ensure_finite(numerator / denominator, "ratio", default=default, log_level=logging.DEBUG))


def validate_numeric_dict(
    metrics: Dict[str, Any],
    defaults: Optional[Dict[str, Numeric]] = None
) -> Dict[str, Any]:
    """
    Validates a dictionary of metrics, ensuring all numeric values are finite.

    Nested dicts are validated recursively; non-numeric values pass through.
    """
    validated: Dict[str, Any] = {}
    defaults = defaults or {}

    for k, v in metrics.items():
        if isinstance(v, dict):
            validated[k] = validate_numeric_dict(v)
        elif isinstance(v, Real) and not isinstance(v, bool):
            validated[k] = ensure_finite(v, k, default=defaults.get(k, 0.0))
        else:
            validated[k] = v

    return validated
