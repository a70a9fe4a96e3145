"""
Utility modules for the signal evaluation pipeline.

Public API:
    - ensure_finite: Replace NaN/Inf with a default and log it
    - clamp_score: Finite score clamped to [0, 100]
    - safe_ratio: Division returning a default on a zero denominator
"""

from utils.numerical_validation import clamp_score, ensure_finite, safe_ratio

__all__ = [
    "ensure_finite",
    "clamp_score",
    "safe_ratio",
]
