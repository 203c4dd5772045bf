"""Configuration and prompt templates."""

from phaseclean.config.settings import (
    CheckpointThresholds,
    ConfidenceWeights,
    PipelineSettings,
    SeverityPenalties,
    UserConfig,
    get_settings,
)

__all__ = [
    "CheckpointThresholds",
    "ConfidenceWeights",
    "PipelineSettings",
    "SeverityPenalties",
    "UserConfig",
    "get_settings",
]
