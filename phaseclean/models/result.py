"""Pipeline run results."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from phaseclean.models.context import AccumulatedContext
from phaseclean.models.enums import ConfidenceLevel, RunStatus
from phaseclean.models.hints import StructureHints


class ConfidenceDisplay(BaseModel):
    """Human-facing rendering of the pipeline confidence."""

    value: float = Field(ge=0.0, le=1.0)
    percentage: int = Field(ge=0, le=100)
    level: ConfidenceLevel
    recommendation: str


class PipelineResult(BaseModel):
    """Terminal result of a run.

    Failures are reported through `status`; a run never raises for an
    unrecovered checkpoint or a halt.
    """

    run_id: str
    document_id: str
    status: RunStatus
    cleaned_text: str
    final_confidence: float = Field(ge=0.0, le=1.0)
    confidence_display: ConfidenceDisplay
    context: AccumulatedContext
    hints: Optional[StructureHints] = None
    original_word_count: int = 0
    final_word_count: int = 0
    finished_at: datetime = Field(default_factory=datetime.now)
    halt_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_WARNINGS)

    @property
    def word_preservation(self) -> float:
        if self.original_word_count == 0:
            return 1.0
        return self.final_word_count / self.original_word_count
