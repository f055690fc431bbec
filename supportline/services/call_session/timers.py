"""Named cancellable timers owned by a call session."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class SessionTimers:
    """
    Named asyncio timers.

    Starting a timer under a name already in use replaces it. ``cancel_all``
    cancels every timer at once; a timer callback that ends the session may
    call it safely because the running timer is never cancelled from inside.
    """

    def __init__(self, owner: str):
        self.owner = owner
        self._tasks: Dict[str, asyncio.Task] = {}

    def __contains__(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def names(self):
        return [name for name in self._tasks if name in self]

    def start(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds."""
        self.cancel(name)
        self._tasks[name] = asyncio.create_task(self._run_once(name, delay, callback))

    def start_interval(self, name: str, interval: float, callback: TimerCallback) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        self.cancel(name)
        self._tasks[name] = asyncio.create_task(self._run_interval(name, interval, callback))

    def cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    async def _run_once(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # Drop the handle first so the callback can re-arm the same name
        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]
        await self._fire(name, callback)

    async def _run_interval(self, name: str, interval: float, callback: TimerCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._fire(name, callback)
            # Cancelled from inside its own callback
            if self._tasks.get(name) is not asyncio.current_task():
                return

    async def _fire(self, name: str, callback: TimerCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[TIMERS] Timer '{name}' for call {self.owner} failed: {e}", exc_info=True)
