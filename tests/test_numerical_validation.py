"""
Tests for NaN/Inf guards on scores and audit metrics.
"""

import logging

import numpy as np
import pytest

from config.constants import StageName
from scoring.types import StageResult
from utils.numerical_validation import clamp_score, ensure_finite, safe_ratio, validate_numeric_dict


class TestEnsureFinite:
    def test_finite_values_pass_through(self):
        assert ensure_finite(10.5, "test") == 10.5
        assert ensure_finite(-5, "test") == -5
        assert ensure_finite(np.float64(2.5), "test") == 2.5

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), -float("inf")])
    def test_non_finite_replaced(self, bad, caplog):
        with caplog.at_level(logging.WARNING):
            assert ensure_finite(bad, "writer_ratio", default=1.0) == 1.0
        assert "Non-finite value detected for writer_ratio" in caplog.text

    def test_non_numeric_replaced(self):
        assert ensure_finite("12", "score") == 0.0
        assert ensure_finite(True, "score") == 0.0


class TestClampAndRatio:
    def test_clamp(self):
        assert clamp_score(120) == 100.0
        assert clamp_score(-3) == 0.0
        assert clamp_score(float("nan")) == 0.0

    def test_safe_ratio(self):
        assert safe_ratio(6, 3) == 2.0
        assert safe_ratio(1, 0) == 0.0
        assert safe_ratio(1, 0, default=999.0) == 999.0


class TestValidateNumericDict:
    def test_mixed_payload(self, caplog):
        data = {
            "valid": 100.0,
            "bad_nan": float("nan"),
            "bad_inf": float("inf"),
            "label": "ALIGNED",
            "missing": None,
            "nested": {"iv": float("nan")},
        }
        with caplog.at_level(logging.WARNING):
            result = validate_numeric_dict(data, defaults={"bad_nan": -1.0})

        assert result["valid"] == 100.0
        assert result["bad_nan"] == -1.0
        assert result["bad_inf"] == 0.0
        assert result["label"] == "ALIGNED"
        assert result["missing"] is None
        assert result["nested"] == {"iv": 0.0}

    def test_stage_metrics_sanitized(self):
        result = StageResult(
            stage=StageName.VOLATILITY,
            score=50.0,
            passed=True,
            metrics={"hv_iv_ratio": float("inf"), "iv_percentile": 40.0},
        )
        assert result.metrics["hv_iv_ratio"] == 0.0
        assert result.metrics["iv_percentile"] == 40.0
