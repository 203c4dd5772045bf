"""Batch runner - cleans several documents concurrently.

Each document is an independent run. Runs execute on worker threads
(the pipeline itself is synchronous) with at most `max_concurrent_documents`
in flight, which bounds the load on the AI service. The reconnaissance
decision is awaited outside the semaphore, so one document waiting for a
human never blocks the others.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

import structlog

from phaseclean.config.settings import UserConfig
from phaseclean.models.result import PipelineResult
from phaseclean.pipeline.cancellation import CancellationToken
from phaseclean.pipeline.errors import CleaningPipelineError
from phaseclean.pipeline.orchestrator import PendingRun, PipelineOrchestrator

logger = structlog.get_logger(__name__)

# Answers the reconnaissance question for one document; may be async.
BatchDecisionProvider = Callable[[PendingRun], Union[bool, Awaitable[bool]]]


@dataclass
class BatchItem:
    """One document of a batch."""
    document_id: str
    text: str
    user_config: Optional[UserConfig] = None

    def config(self) -> UserConfig:
        base = self.user_config or UserConfig()
        return base.model_copy(update={"document_id": self.document_id})


@dataclass
class BatchReport:
    """Results of a batch, keyed by document id."""
    results: dict[str, PipelineResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [doc_id for doc_id, result in self.results.items() if result.succeeded]

    @property
    def failed(self) -> list[str]:
        failed = [doc_id for doc_id, result in self.results.items() if not result.succeeded]
        return failed + list(self.errors)


class BatchRunner:
    """Runs independent documents concurrently."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        max_concurrent: Optional[int] = None,
        decision_provider: Optional[BatchDecisionProvider] = None,
    ):
        self.orchestrator = orchestrator
        self.max_concurrent = max_concurrent or orchestrator.settings.max_concurrent_documents
        self.decision_provider = decision_provider

    async def _decide(self, pending: PendingRun) -> bool:
        """Ask for the reconnaissance decision without holding the event loop.

        Coroutine providers are awaited; anything else (including the
        orchestrator's own provider) runs on a worker thread, so a provider
        that blocks on a human only stalls its own document.
        """
        if self.decision_provider is None:
            return await asyncio.to_thread(self.orchestrator.decide, pending)
        if inspect.iscoroutinefunction(self.decision_provider):
            return bool(await self.decision_provider(pending))
        answer = await asyncio.to_thread(self.decision_provider, pending)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def _run_one(
        self,
        item: BatchItem,
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
    ) -> PipelineResult:
        async with semaphore:
            logger.debug("batch_document_start", document_id=item.document_id)
            started = await asyncio.to_thread(self.orchestrator.start, item.text, item.config(), token)
        if isinstance(started, PipelineResult):
            return started

        proceed = await self._decide(started)

        async with semaphore:
            return await asyncio.to_thread(started.resume, proceed)

    async def run(self, items: list[BatchItem], token: Optional[CancellationToken] = None) -> BatchReport:
        """Clean every item.

        Args:
            items: Documents to clean (document ids must be unique).
            token: Shared cancellation token for the whole batch.

        Returns:
            BatchReport with one result or error per document.
        """
        ids = [item.document_id for item in items]
        if len(set(ids)) != len(ids):
            raise ValueError("Batch document ids must be unique")

        token = token or CancellationToken()
        semaphore = asyncio.Semaphore(self.max_concurrent)
        logger.info("batch_start", documents=len(items), max_concurrent=self.max_concurrent)

        outcomes = await asyncio.gather(
            *[self._run_one(item, semaphore, token) for item in items],
            return_exceptions=True,
        )

        report = BatchReport()
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, PipelineResult):
                report.results[item.document_id] = outcome
            elif isinstance(outcome, CleaningPipelineError):
                report.errors[item.document_id] = str(outcome)
                logger.error("batch_document_failed", document_id=item.document_id, error=str(outcome))
            else:
                raise outcome

        logger.info(
            "batch_complete",
            documents=len(items),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    def run_sync(self, items: list[BatchItem], token: Optional[CancellationToken] = None) -> BatchReport:
        return asyncio.run(self.run(items, token))
