"""Cooperative cancellation for pipeline runs."""

import threading
from typing import Optional

import structlog

from phaseclean.pipeline.errors import PipelineCancelled

logger = structlog.get_logger(__name__)


class CancellationToken:
    """Cancellation flag shared between a host and a running pipeline.

    The pipeline checks the token at every suspension point (phase starts,
    before and after AI calls). Work already in progress finishes its
    current call; the phase it belongs to is then discarded.
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Signal cancellation."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info("cancellation_requested", reason=reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise PipelineCancelled when the token has been triggered."""
        if self._event.is_set():
            raise PipelineCancelled(f"{self._reason} ({where})" if where else self._reason)
