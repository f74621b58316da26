"""Fire-and-forget background jobs whose failures are logged, never raised."""

import asyncio
from collections.abc import Callable
from typing import Any

from loguru import logger


class BackgroundTasks:
    """Runs reconciliation jobs after the operation that scheduled them.

    Inside a running event loop each job becomes an ``asyncio.Task`` that
    starts on the next loop iteration. Without a loop (CLI, tests) jobs queue
    up until ``run_pending()`` is called.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self._pending: list[tuple[str, Callable[..., Any], tuple[Any, ...]]] = []
        self.failures = 0

    def spawn(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending.append((name, func, args))
            return

        task = loop.create_task(self._run_async(name, func, args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_async(self, name: str, func: Callable[..., Any], args: tuple[Any, ...]) -> None:
        # Yield first so the spawning operation finishes before the job starts.
        await asyncio.sleep(0)
        self._run(name, func, args)

    def _run(self, name: str, func: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            func(*args)
        except Exception:
            self.failures += 1
            logger.opt(exception=True).warning("Background job {} failed", name)
        else:
            logger.debug("Background job {} done", name)

    @property
    def pending_count(self) -> int:
        return len(self._pending) + len(self._tasks)

    def run_pending(self) -> int:
        """Run queued jobs synchronously, including jobs they schedule. Returns jobs run."""
        ran = 0
        while self._pending:
            name, func, args = self._pending.pop(0)
            self._run(name, func, args)
            ran += 1
        return ran

    async def drain(self) -> None:
        """Wait for every spawned task and run anything still queued."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.run_pending()
