"""Unit tests for the JSON run store and resuming saved runs."""

import json

import pytest

from phaseclean.models import PipelinePhase, RunStatus
from phaseclean.pipeline.errors import PersistenceError, ResumeError
from phaseclean.pipeline.orchestrator import PendingRun, PipelineOrchestrator
from phaseclean.pipeline.persistence import SCHEMA_VERSION, JsonRunStore


@pytest.fixture
def store(tmp_path) -> JsonRunStore:
    return JsonRunStore(tmp_path / "store")


@pytest.fixture
def pending(scenario_text, settings, heuristic_config, store) -> PendingRun:
    return PipelineOrchestrator(settings=settings, store=store).start(scenario_text, heuristic_config)


class TestJsonRunStore:
    """Tests for saving and loading state."""

    def test_pending_run_is_saved(self, pending, store):
        state = store.load_run(pending.run_id)

        assert state.awaiting_decision is True
        assert state.status is None
        assert state.context.completed_phases == [PipelinePhase.RECONNAISSANCE]
        assert state.hints == pending.hints
        assert store.list_runs() == [pending.run_id]

    def test_hints_roundtrip(self, pending, store):
        assert store.load_hints("rivers") == pending.hints
        assert store.load_hints("unknown") is None

    def test_missing_run(self, store):
        with pytest.raises(PersistenceError, match="No saved run"):
            store.load_run("run_missing")

    def test_unknown_schema_version(self, pending, store):
        path = store.directory / "runs" / pending.run_id / "state.json"
        raw = json.loads(path.read_text(encoding="utf-8"))
        raw["schema_version"] = SCHEMA_VERSION + 1
        path.write_text(json.dumps(raw), encoding="utf-8")

        with pytest.raises(PersistenceError, match="schema version"):
            store.load_run(pending.run_id)

    def test_unknown_field(self, pending, store):
        path = store.directory / "runs" / pending.run_id / "state.json"
        raw = json.loads(path.read_text(encoding="utf-8"))
        raw["surprise"] = True
        path.write_text(json.dumps(raw), encoding="utf-8")

        with pytest.raises(PersistenceError, match="does not match RunState"):
            store.load_run(pending.run_id)

    def test_corrupt_file(self, pending, store):
        path = store.directory / "runs" / pending.run_id / "state.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError, match="Could not read"):
            store.load_run(pending.run_id)


class TestResume:
    """Tests for continuing persisted runs."""

    def test_resume_matches_direct_run(self, pending, store, scenario_text, settings, heuristic_config):
        resumed = PipelineOrchestrator(settings=settings, store=store).resume_run(pending.run_id, proceed=True)
        direct = PipelineOrchestrator(settings=settings).run(scenario_text, heuristic_config)

        assert resumed.run_id == pending.run_id
        assert resumed.status == direct.status
        assert resumed.cleaned_text == direct.cleaned_text
        assert store.load_run(pending.run_id).status == resumed.status

    def test_resume_can_decline(self, pending, store, scenario_text, settings):
        result = PipelineOrchestrator(settings=settings, store=store).resume_run(pending.run_id, proceed=False)

        assert result.status == RunStatus.CANCELLED_BY_USER
        assert result.cleaned_text == scenario_text

    def test_terminal_run_cannot_resume(self, pending, store, settings):
        pending.resume(True)
        orchestrator = PipelineOrchestrator(settings=settings, store=store)

        with pytest.raises(ResumeError, match="already finished"):
            orchestrator.resume_run(pending.run_id)

    def test_resume_without_store(self, settings):
        with pytest.raises(ResumeError):
            PipelineOrchestrator(settings=settings).resume_run("run_any")
