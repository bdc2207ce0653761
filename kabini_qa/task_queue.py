"""
Sequential, cancellable task queue for batch answer generation.

Items run one at a time to stay friendly to provider rate limits. A failed
item is logged and recorded. An item the worker reports as gone (None)
is skipped. cancel() stops the queue before the next item.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class QueueResult:
    """Outcome of one queue run."""

    completed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False


class AnswerQueue:
    """Runs an async worker over item ids in order."""

    def __init__(self, worker: Callable[[str], Awaitable[Any]]):
        self.worker = worker
        self._cancel_requested = False
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Stop after the item currently in flight."""
        if self._running:
            self._cancel_requested = True

    async def run(self, item_ids: Iterable[str]) -> QueueResult:
        """
        Process item ids sequentially.

        Raises:
            RuntimeError: If the queue is already running
        """
        if self._running:
            raise RuntimeError("AnswerQueue is already running")

        pending = list(item_ids)
        result = QueueResult()
        self._running = True
        self._cancel_requested = False
        try:
            for index, item_id in enumerate(pending):
                if self._cancel_requested:
                    result.cancelled = True
                    result.skipped.extend(pending[index:])
                    logger.info(f"Answer queue cancelled, {len(pending) - index} items skipped")
                    break
                try:
                    outcome = await self.worker(item_id)
                except Exception as e:
                    logger.warning(f"Answer generation failed for {item_id}: {e}")
                    result.failed[item_id] = str(e)
                    continue
                if outcome is None:
                    logger.info(f"Item {item_id} no longer exists, skipped")
                    result.skipped.append(item_id)
                else:
                    result.completed.append(item_id)
        finally:
            self._running = False
            self._cancel_requested = False
        return result


__all__ = ["QueueResult", "AnswerQueue"]
