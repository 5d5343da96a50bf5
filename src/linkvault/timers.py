"""Delayed, cancelable actions.

Workflows schedule their timeouts and reconnect attempts here so that a
workflow reaching a terminal state can cancel everything it left pending.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[Any]]]


class TimerSet:
    """Named timers owned by one workflow.

    Usage:
        timers = TimerSet()
        timers.schedule("issue-timeout", 60.0, on_timeout)
        ...
        timers.cancel("issue-timeout")
        timers.cancel_all()
    """

    def __init__(self, name: str = "timers"):
        self._name = name
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, name: str, delay: float, callback: TimerCallback) -> asyncio.Task:
        """Run callback after delay seconds.

        Scheduling a name that is already pending replaces the old timer.

        Args:
            name: Timer name, unique within this set.
            delay: Seconds to wait.
            callback: Sync or async callable.

        Returns:
            The task driving the timer.
        """
        self.cancel(name)
        task = asyncio.create_task(self._fire(name, delay, callback))
        self._tasks[name] = task
        return task

    async def _fire(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # Drop ourselves first so the callback may reschedule the same name
        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"{self._name}: timer {name!r} failed")

    def cancel(self, name: str) -> bool:
        """Cancel a pending timer.

        Returns:
            True if a pending timer was cancelled.
        """
        task: Optional[asyncio.Task] = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # A timer cancelling itself from its own callback
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending timer."""
        for name in list(self._tasks):
            self.cancel(name)

    def active(self) -> list[str]:
        """Names of timers that have not fired yet."""
        return [name for name, task in self._tasks.items() if not task.done()]

    def __contains__(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()
