"""Checkpoint evaluation result models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from phaseclean.models.enums import (
    CheckpointResult,
    CheckpointType,
    PipelinePhase,
    RecommendedAction,
    Severity,
)


class CriterionResult(BaseModel):
    """Result of checking one checkpoint criterion."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    severity: Severity
    actual: Optional[Any] = Field(None, description="Observed value")
    expected: Optional[Any] = Field(None, description="Threshold or expected value")
    explanation: str = ""


class CheckpointOutcome(BaseModel):
    """Graded outcome of a checkpoint."""

    model_config = ConfigDict(frozen=True)

    checkpoint_type: CheckpointType
    phase: PipelinePhase
    result: CheckpointResult
    criteria: tuple[CriterionResult, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    recommended_action: RecommendedAction
    summary: str = ""
    evaluated_at: datetime = Field(default_factory=datetime.now)

    @property
    def unmet(self) -> list[CriterionResult]:
        return [c for c in self.criteria if not c.passed]

    @property
    def unmet_severities(self) -> list[Severity]:
        return [c.severity for c in self.unmet]

    @property
    def is_failure(self) -> bool:
        return self.result == CheckpointResult.FAILED
