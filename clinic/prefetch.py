from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from clinic.api.models import Patient

logger = logging.getLogger(__name__)


class PrefetchSlot:
    """Single-slot speculative holder for the next case.

    Contract:
      - `arm(factory)` starts at most one request; arming a non-empty slot is a no-op.
      - `consume()` always empties the slot, then awaits the same underlying
        request (no duplicate call if it is still in flight). It returns None
        when the slot was already empty and re-raises the request's error.
      - `invalidate()` drops the slot without cancelling the request; its late
        result is discarded.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[Patient] | None = None
        # Invalidated requests still running; referenced so they are not garbage collected.
        self._detached: set[asyncio.Task[Patient]] = set()

    @property
    def is_armed(self) -> bool:
        return self._task is not None

    @property
    def status(self) -> str:
        task = self._task
        if task is None:
            return "empty"
        if not task.done():
            return "pending"
        if task.cancelled() or task.exception() is not None:
            return "failed"
        return "ready"

    def arm(self, factory: Callable[[], Awaitable[Patient]]) -> bool:
        if self._task is not None:
            logger.debug("Prefetch already armed; ignoring")
            return False

        async def _run() -> Patient:
            return await factory()

        self._task = asyncio.create_task(_run(), name="clinic-prefetch")
        return True

    async def wait_resolved(self) -> bool:
        """Wait for the armed request without consuming it.

        Returns True only if it succeeded and is still the one in the slot.
        """

        task = self._task
        if task is None:
            return False
        await asyncio.wait({task})
        if task is not self._task:
            return False
        return not task.cancelled() and task.exception() is None

    async def consume(self) -> Patient | None:
        task, self._task = self._task, None
        if task is None:
            return None
        return await task

    def invalidate(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if task.done():
            _discard_result(task)
            return
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)

    def _on_detached_done(self, task: asyncio.Task[Patient]) -> None:
        self._detached.discard(task)
        _discard_result(task)


def _discard_result(task: asyncio.Task[Patient]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Discarded failed prefetch: %s", exc)
    else:
        logger.debug("Discarded stale prefetch result")
