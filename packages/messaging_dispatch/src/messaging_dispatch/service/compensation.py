"""
Compensation Runner

Detached best-effort cleanup tasks (e.g. removing an orphaned storage object).
Each task runs with a bounded retry; a final failure is logged, never raised
to the request that scheduled it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class CompensationRunner:
    """Schedules fire-and-forget cleanup coroutines on the running loop."""

    def __init__(self, attempts: int = 3, backoff: float = 0.5, max_wait: float = 5.0):
        self.attempts = attempts
        self.backoff = backoff
        self.max_wait = max_wait
        self._tasks: set[asyncio.Task] = set()

    def schedule(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> asyncio.Task:
        """Start a detached cleanup task. Must be called from a running loop."""
        task = asyncio.get_running_loop().create_task(self._run(name, func, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any) -> bool:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=self.backoff, max=self.max_wait),
                reraise=True,
            ):
                with attempt:
                    await func(*args)
        except Exception as e:
            logger.warning(
                f"Compensation '{name}' gave up: {e}",
                extra={"attempts": self.attempts, "task_args": [str(a) for a in args]},
            )
            return False

        logger.debug(f"Compensation '{name}' completed")
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled task (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
