"""
Configuration management using Pydantic v2.

Every weight, threshold and percentage the pipeline branches on lives here,
so a replay can be re-run under an alternate parameterization purely from
the environment.

Environment variables use double underscore for nesting:
    WEIGHTS__WRITER_RATIO=2
    THRESHOLDS__EXECUTE_SCORE=72.5
    TRADE__STRICT_ATM_IV=true
    PERSISTENCE__DB_PATH=/var/lib/optisignal/signals.db

Example:
    >>> from config.settings import load_settings
    >>> settings = load_settings()
    >>> settings.weights.total
    8.0
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import STAGE_ORDER, StageName

logger = logging.getLogger(__name__)


class StageWeights(BaseModel):
    """Per-stage weights for the overall score.

    The writer-ratio gate carries double weight by default to reflect its
    gatekeeper status even after it has passed.
    """

    regime: float = Field(default=1.0, description="Stage 1 weight", ge=0)
    price_action: float = Field(default=1.0, description="Stage 2 weight", ge=0)
    multi_timeframe: float = Field(default=1.0, description="Stage 3 weight", ge=0)
    volatility: float = Field(default=1.0, description="Stage 4 weight", ge=0)
    writer_ratio: float = Field(default=2.0, description="Stage 5 (gate) weight", ge=0)
    risk_regime: float = Field(default=1.0, description="Stage 6 weight", ge=0)
    portfolio: float = Field(default=1.0, description="Stage 7 weight", ge=0)

    @model_validator(mode="after")
    def validate_total(self) -> "StageWeights":
        if self.total <= 0:
            raise ValueError("At least one stage weight must be positive")
        return self

    @property
    def total(self) -> float:
        return float(sum(self.as_mapping().values()))

    def as_mapping(self) -> dict[StageName, float]:
        """Weights keyed by stage, in pipeline order."""
        return {stage: getattr(self, stage.value) for stage in STAGE_ORDER}


class DecisionThresholds(BaseModel):
    """Overall-score boundaries for the final decision.

    Attributes:
        execute_score: Overall score at or above which an allowed trade executes
        wait_score: Overall score at or above which the decision is WAIT
        round_overall_score: Round the overall score to an integer before
            comparing (the legacy dashboard behaviour)
    """

    execute_score: float = Field(default=70.0, description="EXECUTE threshold", ge=0, le=100)
    wait_score: float = Field(default=50.0, description="WAIT threshold", ge=0, le=100)
    round_overall_score: bool = Field(
        default=False, description="Round overall score to an integer"
    )

    @model_validator(mode="after")
    def validate_thresholds_logic(self) -> "DecisionThresholds":
        if not self.wait_score < self.execute_score:
            raise ValueError(
                f"Thresholds must satisfy wait_score < execute_score. "
                f"Got: {self.wait_score} < {self.execute_score}"
            )
        return self


class TradeParameters(BaseModel):
    """Proposed-trade derivation and ATM IV lookup.

    Attributes:
        stop_loss_pct: Fixed stop buffer as a fraction of entry
        target_pct: Fixed favourable move as a fraction of entry
        default_atm_iv: IV (percent) used when the ATM strike has no call IV
        strict_atm_iv: Reject the request instead of using the default IV
        price_action_timeframe: Series fed to the price-action stage
    """

    stop_loss_pct: float = Field(default=0.02, description="Stop-loss buffer", gt=0, lt=1)
    target_pct: float = Field(default=0.05, description="Target move", gt=0, lt=1)
    default_atm_iv: float = Field(default=20.0, description="Fallback ATM IV (%)", gt=0)
    strict_atm_iv: bool = Field(
        default=False, description="Treat a missing ATM IV as an input error"
    )
    price_action_timeframe: Literal["5m", "15m", "1h"] = Field(
        default="5m", description="Timeframe used by the price-action stage"
    )

    @property
    def reward_to_risk(self) -> float:
        return self.target_pct / self.stop_loss_pct


class WriterRatioConfig(BaseModel):
    """Gatekeeper thresholds."""

    min_ratio: float = Field(default=2.5, description="Minimum writer ratio to pass", gt=0)
    ideal_ratio: float = Field(default=3.0, description="Ratio earning full gate score", gt=0)
    unbounded_ratio: float = Field(
        default=999.0, description="Ratio reported when the opposing side has no writers", gt=0
    )

    @model_validator(mode="after")
    def validate_ordering(self) -> "WriterRatioConfig":
        if self.ideal_ratio < self.min_ratio:
            raise ValueError(
                f"ideal_ratio ({self.ideal_ratio}) must be >= min_ratio ({self.min_ratio})"
            )
        return self


class RiskRegimeConfig(BaseModel):
    """Session and event windows for the risk-regime stage."""

    opening_window_minutes: int = Field(default=15, ge=0, le=120)
    closing_window_minutes: int = Field(default=15, ge=0, le=120)
    lunch_hour: int = Field(default=12, ge=0, le=23)
    event_window_before_minutes: int = Field(default=120, ge=0)
    event_window_after_minutes: int = Field(default=60, ge=0)
    extreme_vix: float = Field(default=30.0, description="VIX above which trading halts", gt=0)
    low_liquidity_ratio: float = Field(
        default=0.5, description="Volume / average volume below which liquidity is low", gt=0, le=1
    )


class PortfolioConfig(BaseModel):
    """Portfolio limits and Kelly sizing."""

    max_portfolio_risk_pct: float = Field(default=10.0, gt=0, le=100)
    kelly_multiplier: float = Field(default=0.25, gt=0, le=1)
    min_win_rate: float = Field(default=0.40, ge=0, le=1)
    min_profit_factor: float = Field(default=1.2, ge=0)
    min_trades_for_stats: int = Field(
        default=20, description="History length before win-rate/profit-factor limits apply", ge=1
    )
    default_kelly: float = Field(
        default=0.02, description="Kelly fraction used without enough history", gt=0, le=1
    )


class PersistenceConfig(BaseModel):
    db_path: str = Field(default="data_cache/signals.db", description="SQLite signal store")
    busy_timeout_s: float = Field(default=30.0, gt=0, description="Wait on a locked database before failing")


class ObservabilityConfig(BaseModel):
    """Metrics and tracing switches."""

    enable_prometheus: bool = Field(default=True, description="Record Prometheus metrics")
    enable_tracing: bool = Field(default=True, description="Emit OpenTelemetry spans")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables and ``.env``.

    All sections carry defaults that reproduce the production decision rules,
    so ``Settings()`` is valid with an empty environment.
    """

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")

    weights: StageWeights = Field(default_factory=StageWeights)
    thresholds: DecisionThresholds = Field(default_factory=DecisionThresholds)
    trade: TradeParameters = Field(default_factory=TradeParameters)
    writer_ratio: WriterRatioConfig = Field(default_factory=WriterRatioConfig)
    risk_regime: RiskRegimeConfig = Field(default_factory=RiskRegimeConfig)
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    environment: str = Field(default="development", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Root log level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("log_level")
    @classmethod
    def valid_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


def load_settings() -> Settings:
    """
    Load and validate settings from environment variables and .env file.

    Raises:
        ValidationError: If configuration is invalid
    """
    try:
        settings = Settings()
        logger.info(f"Settings loaded successfully. Environment: {settings.environment}")
        logger.debug(
            f"Weights total={settings.weights.total}, "
            f"execute>={settings.thresholds.execute_score}, wait>={settings.thresholds.wait_score}"
        )
        return settings
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        raise
