"""Cooperative cancellation for batch runs."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Flag polled by the orchestrator at the top of every round.

    Cancelling never interrupts a model call already in flight. Safe to
    trigger from another thread (e.g. a UI or signal handler).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


__all__ = ["CancellationToken"]
