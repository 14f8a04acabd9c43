"""
Async task registry.

Every background loop (room sweeper, call poll loop, candidate sender) is
registered by name so it can be cancelled as a group on hangup or shutdown
and so its failures are logged instead of disappearing.
"""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

logger = logging.getLogger("skillswap.tasks")


class TaskRegistry:
    """
    Registry for tracking and cancelling named async tasks.

    Features:
    - One live task per name (re-registering cancels the previous one)
    - Failures logged with the task name
    - Immediate cancel for hangup, bounded wait for shutdown
    """

    def __init__(self, owner: str = "tasks"):
        self.owner = owner
        self._tasks: Dict[str, asyncio.Task] = {}
        self._failed_tasks: Set[str] = set()
        self._completed_count: int = 0

    def register(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Start a coroutine as a tracked task.

        Args:
            name: Task name, unique within this registry
            coro: Coroutine to execute

        Returns:
            The created asyncio.Task
        """
        previous = self._tasks.get(name)
        if previous is not None and not previous.done():
            logger.debug(f"[{self.owner}] Replacing running task: {name}")
            previous.cancel()

        task = asyncio.create_task(coro, name=f"{self.owner}:{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._on_task_complete(name, t))
        logger.debug(f"[{self.owner}] Task registered: {name}")
        return task

    def _on_task_complete(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            self._tasks.pop(name, None)
        self._completed_count += 1

        if task.cancelled():
            logger.debug(f"[{self.owner}] Task '{name}' was cancelled")
            return

        exc = task.exception()
        if exc:
            self._failed_tasks.add(name)
            logger.error(f"[{self.owner}] Task '{name}' failed: {exc}", exc_info=exc)

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def failed_count(self) -> int:
        return len(self._failed_tasks)

    @property
    def completed_count(self) -> int:
        return self._completed_count

    def get_failed_task_names(self) -> Set[str]:
        return set(self._failed_tasks)

    def cancel_all(self) -> int:
        """
        Cancel every task without waiting.

        Returns:
            Number of tasks cancelled
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        return len(tasks)

    async def cancel_task(self, name: str) -> bool:
        """
        Cancel a task by name and wait for it to finish.

        Returns:
            True if the task was found
        """
        task = self._tasks.get(name)
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            # Already logged by the done callback
            pass
        return True

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Cancel all tasks and wait up to `timeout` seconds for them to exit.
        """
        if not self._tasks:
            return

        tasks = list(self._tasks.values())
        logger.info(f"[{self.owner}] Shutting down {len(tasks)} tasks (timeout={timeout}s)")
        for task in tasks:
            task.cancel()

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"[{self.owner}] Shutdown timeout: {len(pending)} tasks still running")
