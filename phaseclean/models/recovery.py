"""Fallback actions and recovery audit events."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from phaseclean.models.enums import (
    FailureKind,
    FallbackActionKind,
    PipelinePhase,
    StepMethod,
)


class FallbackAction(BaseModel):
    """Bounded recovery action chosen for a failure."""

    model_config = ConfigDict(frozen=True)

    kind: FallbackActionKind
    fallback_method: Optional[StepMethod] = Field(
        None,
        description="Method to switch to (fallback_to, or after retry_once)",
    )
    timeout_multiplier: float = Field(default=1.0, ge=1.0, description="Budget scale for retry_once")
    reason: str = ""

    @property
    def preserves_content(self) -> bool:
        return self.kind in (
            FallbackActionKind.SKIP_STEP,
            FallbackActionKind.SKIP_REMAINING_STEPS_IN_PHASE,
            FallbackActionKind.ROLLBACK_PHASE,
        )


class RecoveryEvent(BaseModel):
    """Audit record of one recovery decision."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    step: str
    failure_kind: FailureKind
    action: FallbackAction
    attempt: int = Field(default=1, ge=1)
    message: str = ""
    occurred_at: datetime = Field(default_factory=datetime.now)
