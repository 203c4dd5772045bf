"""File-based run store.

Layout under the store directory:

    hints/<document_id>.json     StructureHints of a document
    runs/<run_id>/state.json     Saved run state (context, document, hints)

Files are versioned JSON. Loading rejects unknown schema versions and
unknown fields; anything that does not decode raises PersistenceError.
"""

import json
import os
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from phaseclean.config.settings import UserConfig
from phaseclean.models.context import AccumulatedContext
from phaseclean.models.document import WorkingDocument
from phaseclean.models.enums import PipelinePhase, RunStatus
from phaseclean.models.hints import StructureHints
from phaseclean.pipeline.errors import PersistenceError

logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 1


# =============================================================================
# Persisted Models
# =============================================================================

class HintsRecord(BaseModel):
    """Envelope for persisted structure hints."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = SCHEMA_VERSION
    hints: StructureHints


class RunState(BaseModel):
    """Everything needed to continue a run after the last completed phase."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = SCHEMA_VERSION
    run_id: str
    document_id: str
    user_config: UserConfig
    original_text: str
    document: WorkingDocument
    hints: Optional[StructureHints] = None
    context: AccumulatedContext
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    confidence_history: list[tuple[PipelinePhase, float]] = Field(default_factory=list)
    awaiting_decision: bool = Field(
        default=False,
        description="Reconnaissance finished and the proceed/cancel answer is pending",
    )
    status: Optional[RunStatus] = Field(None, description="Set once the run is terminal")

    @property
    def is_terminal(self) -> bool:
        return self.status is not None


# =============================================================================
# Store
# =============================================================================

class JsonRunStore:
    """Saves and loads hints and run state as JSON files."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _hints_path(self, document_id: str) -> Path:
        return self.directory / "hints" / f"{_safe_name(document_id)}.json"

    def _run_dir(self, run_id: str) -> Path:
        return self.directory / "runs" / _safe_name(run_id)

    def _state_path(self, run_id: str) -> Path:
        return self._run_dir(run_id) / "state.json"

    # =========================================================================
    # Hints
    # =========================================================================

    def save_hints(self, hints: StructureHints) -> Path:
        path = self._hints_path(hints.document_id)
        _write_json(path, HintsRecord(hints=hints).model_dump(mode="json"))
        logger.debug("hints_saved", document_id=hints.document_id, path=str(path))
        return path

    def load_hints(self, document_id: str) -> Optional[StructureHints]:
        path = self._hints_path(document_id)
        if not path.exists():
            return None
        return _decode(HintsRecord, path).hints

    # =========================================================================
    # Runs
    # =========================================================================

    def save_run(self, state: RunState) -> Path:
        path = self._state_path(state.run_id)
        _write_json(path, state.model_dump(mode="json"))
        logger.debug(
            "run_state_saved",
            run_id=state.run_id,
            last_phase=state.context.last_completed_phase.value if state.context.last_completed_phase else None,
            status=state.status.value if state.status else None,
        )
        return path

    def load_run(self, run_id: str) -> RunState:
        """Load a saved run.

        Raises:
            PersistenceError: If the run does not exist or does not decode.
        """
        path = self._state_path(run_id)
        if not path.exists():
            raise PersistenceError(f"No saved run {run_id} in {self.directory}")
        return _decode(RunState, path)

    def list_runs(self) -> list[str]:
        runs_dir = self.directory / "runs"
        if not runs_dir.exists():
            return []
        return sorted(
            p.name for p in runs_dir.iterdir()
            if p.is_dir() and (p / "state.json").exists()
        )


# =============================================================================
# Helpers
# =============================================================================

def _safe_name(identifier: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in identifier)


def _write_json(path: Path, data: dict) -> None:
    """Write atomically: a reader never sees a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(f"Could not write {path}: {e}") from e


def _decode(model: type[BaseModel], path: Path):
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Could not read {path}: {e}") from e

    version = raw.get("schema_version") if isinstance(raw, dict) else None
    if version != SCHEMA_VERSION:
        raise PersistenceError(
            f"{path} has schema version {version!r}; expected {SCHEMA_VERSION}"
        )
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise PersistenceError(f"{path} does not match {model.__name__}: {e}") from e
