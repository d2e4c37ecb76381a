"""
Fire-and-forget dispatch for analytics work triggered by watch events.

The write path never waits on, or fails because of, analytics: every job is
wrapped so its exception is logged and counted, never re-raised.

  BackgroundDispatcher — one asyncio task per job; returns immediately.
  InlineDispatcher     — runs the job to completion before returning; same
                         error isolation. Used by tests to assert results
                         deterministically.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from feedrank.telemetry import ANALYTICS_TASK_FAILURES

logger = logging.getLogger(__name__)

Job = Callable[..., Awaitable[Any]]


async def _run_isolated(label: str, job: Job, *args: Any) -> None:
    try:
        await job(*args)
    except Exception as exc:
        ANALYTICS_TASK_FAILURES.labels(task=label).inc()
        logger.error("Background task %s%s failed: %s", label, args, exc)


class BackgroundDispatcher:
    def __init__(self) -> None:
        # Strong references so pending tasks are not garbage-collected
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, label: str, job: Job, *args: Any) -> None:
        task = asyncio.create_task(_run_isolated(label, job, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for outstanding jobs (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class InlineDispatcher:
    async def dispatch(self, label: str, job: Job, *args: Any) -> None:
        await _run_isolated(label, job, *args)

    async def drain(self) -> None:
        return None
