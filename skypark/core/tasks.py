"""
Fire-and-forget background tasks with independent retry policy

Side effects such as notifications and loyalty accrual are dispatched only
after the triggering transition has committed. Their failures are logged and
counted, never propagated back to the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from skypark.config import settings
from skypark.core.metrics import BACKGROUND_TASKS

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """
    Runs coroutine factories as detached asyncio tasks, retrying with
    exponential backoff
    """

    def __init__(self, max_retries: Optional[int] = None, backoff_cap: Optional[float] = None):
        self.max_retries = settings.TASK_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_cap = settings.TASK_RETRY_BACKOFF_CAP_SECONDS if backoff_cap is None else backoff_cap
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, name: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> asyncio.Task:
        """Schedule `func(*args, **kwargs)`; the factory is re-invoked per attempt"""
        task = asyncio.create_task(self._run(name, func, *args, **kwargs), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, func, *args, **kwargs) -> bool:
        for attempt in range(self.max_retries + 1):
            try:
                await func(*args, **kwargs)
                BACKGROUND_TASKS.labels(task=name, outcome="success").inc()
                logger.debug(f"Task {name} completed (attempt {attempt + 1})")
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Task {name} failed (attempt {attempt + 1}): {type(e).__name__}: {e}")

                if attempt < self.max_retries:
                    await asyncio.sleep(min(2 ** attempt, self.backoff_cap))

        BACKGROUND_TASKS.labels(task=name, outcome="failed").inc()
        logger.error(f"Task {name} gave up after {self.max_retries + 1} attempts")
        return False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight task, used on shutdown"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


task_dispatcher = TaskDispatcher()
