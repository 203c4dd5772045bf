"""Unit tests for the batch runner."""

import asyncio
import threading

import pytest

from phaseclean.models import RunStatus
from phaseclean.pipeline.batch import BatchItem, BatchRunner
from phaseclean.pipeline.orchestrator import PipelineOrchestrator


@pytest.fixture
def items(scenario_text, short_text, heuristic_config) -> list[BatchItem]:
    return [
        BatchItem(document_id="rivers", text=scenario_text, user_config=heuristic_config),
        BatchItem(document_id="short", text=short_text, user_config=heuristic_config),
    ]


class TestBatchRunner:
    """Tests for BatchRunner."""

    def test_runs_every_document(self, items, settings):
        report = BatchRunner(PipelineOrchestrator(settings=settings)).run_sync(items)

        assert set(report.results) == {"rivers", "short"}
        assert report.errors == {}
        assert report.results["rivers"].document_id == "rivers"
        assert report.results["short"].document_id == "short"
        assert report.results["rivers"].run_id != report.results["short"].run_id

    def test_async_decision_provider(self, items, settings):
        async def decide(pending):
            await asyncio.sleep(0)
            return pending.session.document_id == "rivers"

        runner = BatchRunner(PipelineOrchestrator(settings=settings), max_concurrent=1, decision_provider=decide)
        report = runner.run_sync(items)

        assert report.results["rivers"].succeeded
        assert report.results["short"].status == RunStatus.CANCELLED_BY_USER
        assert report.succeeded == ["rivers"]
        assert report.failed == ["short"]

    def test_blocking_decision_does_not_stall_other_documents(self, items, settings):
        rivers_decided = threading.Event()
        waited = {}

        def decide(pending):
            if pending.session.document_id == "rivers":
                rivers_decided.set()
            else:
                waited["short"] = rivers_decided.wait(timeout=5)
            return True

        runner = BatchRunner(PipelineOrchestrator(settings=settings), max_concurrent=2, decision_provider=decide)
        report = runner.run_sync(items)

        assert waited == {"short": True}
        assert set(report.results) == {"rivers", "short"}

    def test_blocking_orchestrator_provider_runs_off_the_loop(self, items, settings):
        rivers_decided = threading.Event()
        waited = {}

        def decide(hints, outcome):
            if hints.document_id == "rivers":
                rivers_decided.set()
            else:
                waited["short"] = rivers_decided.wait(timeout=5)
            return True

        orchestrator = PipelineOrchestrator(settings=settings, decision_provider=decide)
        report = BatchRunner(orchestrator, max_concurrent=2).run_sync(items)

        assert waited == {"short": True}
        assert report.results["short"].document_id == "short"

    def test_duplicate_ids_rejected(self, items, settings):
        runner = BatchRunner(PipelineOrchestrator(settings=settings))
        with pytest.raises(ValueError, match="unique"):
            runner.run_sync(items + [items[0]])

    def test_item_config_takes_document_id(self, heuristic_config):
        item = BatchItem(document_id="other", text="text", user_config=heuristic_config)
        assert item.config().document_id == "other"
        assert item.config().heuristic_only is True
