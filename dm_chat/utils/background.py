import asyncio
from typing import Any, Coroutine, Optional, Set

from loguru import logger


class TaskSupervisor:
    """Owns detached side-effect tasks.

    Tasks spawned here never affect the outcome of the request that spawned
    them: failures are logged and dropped. References are kept until each task
    finishes so the event loop cannot garbage-collect them mid-flight.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task cancelled | task={task.get_name()}")
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background task failed | task={task.get_name()}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        while self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            if pending:
                return

    async def shutdown(self, timeout: float = 5.0) -> None:
        await self.drain(timeout=timeout)
        leftovers = list(self._tasks)
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
            logger.info(f"Cancelled background tasks on shutdown | count={len(leftovers)}")
