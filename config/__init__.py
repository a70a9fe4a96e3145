"""
Configuration for the signal evaluation pipeline.

Public API:
    - Settings: Main configuration class
    - load_settings: Factory that loads settings from the environment
    - Recommendation, SignalStatus, SignalDirection, StageName: core enums
"""

from config.constants import (
    STAGE_ORDER,
    OptionType,
    RejectionReason,
    Recommendation,
    SignalDirection,
    SignalStatus,
    StageName,
)
from config.settings import Settings, load_settings

__all__ = [
    "Settings",
    "load_settings",
    "STAGE_ORDER",
    "OptionType",
    "RejectionReason",
    "Recommendation",
    "SignalDirection",
    "SignalStatus",
    "StageName",
]
