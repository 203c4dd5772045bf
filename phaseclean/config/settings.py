"""Pipeline settings using Pydantic."""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from phaseclean.models.enums import (
    ChapterMarkerStyle,
    ContentType,
    PipelinePhase,
    Severity,
)


class CheckpointThresholds(BaseModel):
    """Criterion thresholds for the six checkpoints."""

    # Reconnaissance
    recon_min_confidence: float = 0.60
    high_overlap_confidence: float = 0.70

    # Semantic
    semantic_max_reduction: float = 0.05

    # Structural
    boundary_tolerance_lines: int = 20
    structural_min_core_preservation: float = 0.95
    structural_max_total_reduction: float = 0.25

    # Reference
    reference_min_pattern_quality: float = 0.60
    reference_min_count_ratio: float = 0.5
    reference_max_count_ratio: float = 2.0
    reference_max_reduction: float = 0.15

    # Optimization
    reflow_max_word_deviation: float = 0.15
    optimize_max_word_deviation: float = 0.20

    # Final review
    final_min_word_preservation: float = 0.50
    final_min_quality: float = 0.60


class ConfidenceWeights(BaseModel):
    """Weights of the confidence factors (sum to 1.0)."""

    reconnaissance: float = 0.30
    execution: float = 0.25
    content_type_match: float = 0.15
    pattern_consistency: float = 0.15
    validation_success: float = 0.15


class SeverityPenalties(BaseModel):
    """Multiplicative confidence penalty per unmet criterion."""

    info: float = 0.0
    warning: float = 0.05
    error: float = 0.15
    critical: float = 0.30

    def for_severity(self, severity: Severity) -> float:
        return getattr(self, severity.value)


def _default_loss_budgets() -> dict[PipelinePhase, float]:
    return {
        PipelinePhase.RECONNAISSANCE: 0.0,
        PipelinePhase.METADATA: 0.0,
        PipelinePhase.SEMANTIC: 0.05,
        PipelinePhase.STRUCTURAL: 0.25,
        PipelinePhase.REFERENCE: 0.15,
        PipelinePhase.FINISHING: 0.05,
        PipelinePhase.OPTIMIZATION: 0.20,
        PipelinePhase.ASSEMBLY: 0.05,
        PipelinePhase.FINAL_REVIEW: 0.0,
    }


class PipelineSettings(BaseSettings):
    """Pipeline configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PHASECLEAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    thresholds: CheckpointThresholds = Field(default_factory=CheckpointThresholds)
    weights: ConfidenceWeights = Field(default_factory=ConfidenceWeights)
    penalties: SeverityPenalties = Field(default_factory=SeverityPenalties)

    # Content loss: share of a phase's input words it may remove before
    # the loss is treated as a failure
    loss_budgets: dict[PipelinePhase, float] = Field(default_factory=_default_loss_budgets)
    loss_rollback_above: float = 0.50
    loss_skip_above: float = 0.25

    # Concurrency
    max_concurrent_documents: int = 3
    max_workers: int = 4

    # AI calls
    ai_timeout_seconds: float = 120.0
    timeout_retry_multiplier: float = 2.0
    excerpt_token_budget: int = 6000
    reflow_chunk_tokens: int = 2000

    # Persistence
    store_dir: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    def loss_budget(self, phase: PipelinePhase) -> float:
        return self.loss_budgets.get(phase, 0.0)


class UserConfig(BaseModel):
    """Per-run options chosen by the caller."""

    document_id: Optional[str] = None
    content_type: ContentType = ContentType.AUTO
    heuristic_only: bool = Field(default=False, description="Never call the AI service")
    disabled_steps: set[str] = Field(default_factory=set)
    auto_proceed: Optional[bool] = Field(
        None,
        description="Answer for the reconnaissance gate when no decision provider is given; "
        "None proceeds unless the checkpoint failed",
    )
    chapter_marker_style: ChapterMarkerStyle = ChapterMarkerStyle.HTML_COMMENTS
    max_paragraph_words: int = Field(default=250, ge=50)

    def step_enabled(self, step: str) -> bool:
        return step not in self.disabled_steps


@lru_cache
def get_settings() -> PipelineSettings:
    """Get cached settings instance."""
    return PipelineSettings()
