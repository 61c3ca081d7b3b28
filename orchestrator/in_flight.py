"""Tracking of in-flight adapter calls so they can be aborted explicitly."""

import asyncio
from typing import Awaitable, TypeVar

from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def caller_cancelled() -> bool:
    """True when the running task itself has a pending cancellation request."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class InFlightTasks:
    """
    Registry of adapter calls currently awaiting a response.

    Every adapter call is wrapped in its own asyncio.Task so that
    abort_all() can cancel outstanding work without touching the tasks
    that are waiting on it. Closing a confirmation dialog never goes
    through here.
    """

    def __init__(self):
        self._tasks: dict[asyncio.Task, str] = {}

    def spawn(self, coro: Awaitable[T], label: str) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(coro)
        self._tasks[task] = label
        task.add_done_callback(self._discard)
        return task

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.pop(task, None)

    def abort_all(self) -> int:
        """Cancel every tracked call; returns how many were still running."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"Aborted {len(pending)} in-flight adapter calls",
                extra={"extra_fields": {"labels": sorted(self._tasks[t] for t in pending)}},
            )
        return len(pending)

    def labels(self) -> list[str]:
        return sorted(label for task, label in self._tasks.items() if not task.done())

    def __len__(self) -> int:
        return sum(1 for t in self._tasks if not t.done())
